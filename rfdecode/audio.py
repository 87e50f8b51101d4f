# Second stage analog audio processing.  Stage 1 (in RFDecode.demodblock)
# leaves each channel as carrier frequency in Hz at a1_freq samples/sec; this
# low-passes, de-emphasizes and decimates a whole frame of it at once.

import logging

import numpy as np
import numpy.fft as npfft

from .errors import InconsistentConfiguration

logger = logging.getLogger("rfdecode")

AUDIO2_DECIMATION = 4

# length of filters that needs to be chopped out of the ifft
AUDIO2_SKIP = 512

# Deviation from the carrier (in Hz) treated as a click/dropout
AUDIO_CLICK_HZ = 500000

# samples zeroed on each side of a click
CLICK_REPLACELEN = 8

CHANNELS = [["audio_left", "left"], ["audio_right", "right"]]


def _center_freqs(rf):
    return {"left": rf.SysParams.audio_lfreq, "right": rf.SysParams.audio_rfreq}


def find_clicks(raw, threshold):
    """ Indexes where raw (deviation from the carrier) is further than threshold from zero """
    return np.nonzero(np.abs(raw) > threshold)[0]


def runfilter_audio_phase2(rf, frame_audio, start, clip_threshold=AUDIO_CLICK_HZ):
    """ Filter one window of stage 1 audio starting at start.

    Returns a record array with the same channel names, of (at most) rf.blocklen samples.
    """
    outputs = []
    centers = _center_freqs(rf)

    clips = None

    for acname, channel in CHANNELS:
        afilter = rf.Filters.audio[channel]
        center_freq = centers[channel]

        raw = np.array(frame_audio[acname][start : start + rf.blocklen], dtype=np.double)
        raw -= center_freq

        # Clicks are found on the left channel and blanked on both
        if clips is None:
            clips = find_clicks(raw, clip_threshold)

        for l in clips:
            raw[max(0, l - CLICK_REPLACELEN) : min(l + CLICK_REPLACELEN, len(raw))] = 0

        if len(raw) < len(afilter.audio2_filter):
            a2_in = np.zeros(len(afilter.audio2_filter), dtype=np.double)
            a2_in[: len(raw)] = raw
        else:
            a2_in = raw

        a2_fft = npfft.fft(a2_in)
        fft_out = a2_fft * afilter.audio2_filter
        output = npfft.ifft(fft_out).real[: len(raw)] + center_freq

        outputs.append(output)

    if len(clips):
        logger.debug("Audio window at %d: blanked %d click samples", start, len(clips))

    return np.rec.array(outputs, names=["audio_left", "audio_right"])


def audio_phase2(rf, frame_audio, mtf_level=0, decimate=True):
    """ Run stage 2 over a whole frame of stage 1 audio.

    rf          -- RFDecode with analog audio enabled
    frame_audio -- record array (audio_left, audio_right) of stage 1 output, in Hz
    mtf_level   -- lowers the click threshold for worn disks
    decimate    -- reduce the output rate by AUDIO2_DECIMATION
    """
    if not rf.Filters.audio:
        raise InconsistentConfiguration("No analog audio filters (decode_analog_audio is not set)")

    clip_threshold = AUDIO_CLICK_HZ / (1 + mtf_level)

    # this creates an output array with left/right channels.
    output_audio2 = np.rec.array(
        [np.zeros(len(frame_audio), dtype=np.double) for _ in CHANNELS],
        names=["audio_left", "audio_right"],
    )

    # copy the first block in it's entirety, to keep audio and video samples aligned
    tmp = runfilter_audio_phase2(rf, frame_audio, 0, clip_threshold)

    if len(tmp) >= len(output_audio2):
        output_audio2 = tmp[: len(output_audio2)]
    else:
        output_audio2[: len(tmp)] = tmp

        end = len(frame_audio)
        sjump = rf.blocklen - AUDIO2_SKIP

        ostart = len(tmp)
        for sample in range(sjump, end - sjump, sjump):
            tmp = runfilter_audio_phase2(rf, frame_audio, sample, clip_threshold)

            oend = ostart + len(tmp) - AUDIO2_SKIP
            output_audio2[ostart:oend] = tmp[AUDIO2_SKIP:]
            ostart += len(tmp) - AUDIO2_SKIP

        # The last window ends exactly at the end of the frame
        tmp = runfilter_audio_phase2(rf, frame_audio, end - rf.blocklen, clip_threshold)
        output_audio2[len(output_audio2) - (len(tmp) - AUDIO2_SKIP) :] = tmp[AUDIO2_SKIP:]

    if decimate:
        return output_audio2[::AUDIO2_DECIMATION]

    return output_audio2


def audio_output_rate(rf, decimate=True):
    """ Sample rate (in Hz) of audio_phase2's output """
    if not rf.Filters.audio:
        raise InconsistentConfiguration("No analog audio filters (decode_analog_audio is not set)")

    a1_freq = rf.Filters.audio["left"].a1_freq

    return a1_freq / AUDIO2_DECIMATION if decimate else a1_freq
