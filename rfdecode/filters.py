""" Frequency-domain filter synthesis for the RF decoder.

Every filter is designed with a classical method (butterworth/FIR/pole-zero)
and then sampled at the exact bin frequencies of the block FFT, so applying it
is a single multiply per bin.  The result is a FilterBank, which is never
modified after it is built - new parameters mean a new bank.
"""

import logging
from collections.abc import Mapping

import numpy as np
import scipy.interpolate as spi
import scipy.signal as sps

from .utils import build_hilbert, emphasis_iir, filtfft, filtfft_sos, polar2z
from .utils import delay_filter, edge_lengths, fft_determine_slices, fft_do_slice, fit_delay

logger = logging.getLogger("rfdecode")

# The 0.5mhz filter is an FIR with a known delay, which is rolled back to
# align with the data.
F05_TAPS = 65
F05_OFFSET = 32

# Minimum RF bandwidth kept around each analog audio carrier in stage 1
AUDIO_MIN_BANDWIDTH = 200000

# EFM equaliser gain
EFM_SCALE = 8


class FilterBank(Mapping):
    """A read-only set of frequency-domain filters, one complex value per FFT bin.

    Attributes besides the filters themselves:
        blocklen   -- FFT length every filter is sampled at
        freq_hz    -- sample rate of the RF input
        settle     -- dict of (filter chain -> invalid head length, in input samples)
        settle_end -- dict of (filter chain -> invalid tail length, in input samples)
        audio      -- dict of channel name -> AudioChannelFilter (empty without analog audio)
        F05_offset -- delay of the 0.5mhz FIR, rolled out of demod_05
        audio_fdiv -- stage 1 audio decimation factor (0 without analog audio)
        efm_delay  -- samples the efm output lags the RF input by
        MTF_basemult -- MTF scale of the DecoderParameters the bank was built from

    These are filled in by RFDecode before the bank is swapped in, so a block
    demodulated with this bank always sees matching settings:
        setupcount -- which (re)synthesis of its RFDecode produced this bank
        mtf_mult, mtf_offset -- MTF level adjustments
        delays, limits -- as measured by RFDecode.computedelays with this bank
    """

    def __init__(
        self,
        filters,
        blocklen,
        freq_hz,
        settle=None,
        settle_end=None,
        audio=None,
        F05_offset=F05_OFFSET,
        audio_fdiv=0,
        efm_delay=0,
        MTF_basemult=1.0,
    ):
        self._filters = {}
        for name, filt in filters.items():
            filt = np.asarray(filt, dtype=np.complex128)
            if filt.shape != (blocklen,):
                raise ValueError("filter %s has %d bins, expected %d" % (name, len(filt), blocklen))

            filt.setflags(write=False)
            self._filters[name] = filt

        self.blocklen = blocklen
        self.freq_hz = freq_hz
        self.settle = dict(settle or {})
        self.settle_end = dict(settle_end or {})
        self.audio = dict(audio or {})
        self.F05_offset = F05_offset
        self.audio_fdiv = audio_fdiv
        self.efm_delay = efm_delay
        self.MTF_basemult = MTF_basemult

        self.setupcount = 0
        self.mtf_mult = 1.0
        self.mtf_offset = 0
        self.delays = None
        self.limits = None

    def __getitem__(self, name):
        return self._filters[name]

    def __iter__(self):
        return iter(self._filters)

    def __len__(self):
        return len(self._filters)

    def __repr__(self):
        return "<FilterBank blocklen=%d filters=%s>" % (self.blocklen, sorted(self._filters))

    def max_settle(self):
        return max(self.settle.values()) if self.settle else 0

    def max_settle_end(self):
        return max(self.settle_end.values()) if self.settle_end else 0

    def mtf_level(self, mtf_level):
        """ Scale a block's MTF level by this bank's settings """
        return ((mtf_level * self.mtf_mult) + self.mtf_offset) * self.MTF_basemult


class AudioChannelFilter:
    """ Stage 1 and 2 filters for one analog audio channel.

    The stage 1 filter works on a slice of the block FFT around the carrier
    (lowbin/nbins), which decimates the audio by blocklen // nbins.
    """

    def __init__(self, center_freq, lowbin, nbins, a1_freq, low_freq, blocklen):
        self.center_freq = center_freq
        self.lowbin = lowbin
        self.nbins = nbins
        self.a1_freq = a1_freq
        self.low_freq = low_freq
        self.blocklen = blocklen

        self.filt1 = None
        self.audio2_filter = None

    def slice(self, fftdata):
        """ Cut the bins this channel demodulates out of a full block FFT """
        return fft_do_slice(fftdata, self.lowbin, self.nbins, self.blocklen)


class _Designer:
    # Shorthand to scale frequencies for the filter builders

    def __init__(self, freq_mhz, blocklen):
        self.freq = freq_mhz
        self.freq_half = freq_mhz / 2
        self.freq_hz = freq_mhz * 1000000
        self.freq_hz_half = self.freq_hz / 2
        self.blocklen = blocklen

    # Split out the frequency list given to the filter builder
    def freqrange(self, f1, f2):
        return [f1 / self.freq_hz_half, f2 / self.freq_hz_half]

    # Like freqrange, but for notch filters
    def notchrange(self, f, notchwidth, hz=False):
        return [
            (f - notchwidth) / (self.freq_hz_half if hz else self.freq_half),
            (f + notchwidth) / (self.freq_hz_half if hz else self.freq_half)
        ]

    def fft(self, filt):
        return filtfft(filt, self.blocklen)


def computevideofilters(SP, DP, d, system, ntsc_color_notch=False):
    """ Build the video filter set.  Returns (filters, settle, settle_end) dicts.

    First phase filters (RFVideo, MTF, Frfhpf) work on the RF FFT, second phase
    filters (FVideo*) on the FFT of the demodulated signal.
    """
    SF = {}

    # This high pass filter is intended to detect RF dropouts
    Frfhpf = sps.butter(DP.video_hpf_order, DP.video_hpf_freq / d.freq_hz_half, btype="highpass")
    SF["Frfhpf"] = d.fft(Frfhpf)

    # MTF filter section
    # compute the pole locations symmetric to freq_half (i.e. 12.2 and 27.8)
    MTF_polef_lo = DP.MTF_freq / d.freq_half
    MTF_polef_hi = (d.freq_half + (d.freq_half - DP.MTF_freq)) / d.freq_half

    to_z = lambda pole: polar2z(DP.MTF_poledist, np.pi * pole)

    MTF = sps.zpk2tf([], [to_z(MTF_polef_lo), to_z(MTF_polef_hi)], 1)
    SF["MTF"] = d.fft((np.real(MTF[0]), np.real(MTF[1])))

    # The BPF filter, defined for each system in DecoderParams
    filt_rfvideo = sps.butter(
        DP.video_bpf_order,
        d.freqrange(DP.video_bpf_low, DP.video_bpf_high),
        btype="bandpass",
    )
    # Start building up the combined FFT filter using the BPF
    SF["RFVideo_bpf"] = d.fft(filt_rfvideo)
    rfvideo = SF["RFVideo_bpf"].copy()

    # Notch filters for analog audio.  DdD captures on NTSC need this.
    if SP.analog_audio and system == "NTSC":
        cut_left = sps.butter(
            DP.audio_notchorder,
            d.notchrange(SP.audio_lfreq, DP.audio_notchwidth, True),
            btype="bandstop",
        )
        SF["Fcutl"] = d.fft(cut_left)

        cut_right = sps.butter(
            DP.audio_notchorder,
            d.notchrange(SP.audio_rfreq, DP.audio_notchwidth, True),
            btype="bandstop",
        )
        SF["Fcutr"] = d.fft(cut_right)

        rfvideo *= SF["Fcutl"] * SF["Fcutr"]

    SF["hilbert"] = build_hilbert(d.blocklen)
    SF["RFVideo"] = rfvideo * SF["hilbert"]

    # Second phase FFT filtering, which is performed after the signal is demodulated

    video_lpf = sps.butter(DP.video_lpf_order, DP.video_lpf_freq / d.freq_hz_half, "low")
    SF["Fvideo_lpf"] = d.fft(video_lpf)

    if system == "NTSC" and ntsc_color_notch:
        if DP.video_lpf_freq < 5000000:
            video_notch = sps.butter(
                3,
                [DP.video_lpf_freq / 1000000 / d.freq_half, 5.0 / d.freq_half],
                "bandstop",
            )
            SF["Fvideo_lpf"] = SF["Fvideo_lpf"] * d.fft(video_notch)
        else:
            logger.warning("NTSC color notch needs video_lpf_freq below 5mhz, not applying it")

    # The deemphasis filter.  A time constant of 0 disables it.
    if DP.deemp_low > 0 and DP.deemp_high > 0:
        SF["Fdeemp"] = d.fft(emphasis_iir(DP.deemp_low, DP.deemp_high, d.freq_hz))
        # The direct opposite of the above, used in test signal generation
        SF["Femp"] = d.fft(emphasis_iir(DP.deemp_high, DP.deemp_low, d.freq_hz))
    else:
        SF["Fdeemp"] = np.ones(d.blocklen, dtype=np.complex128)
        SF["Femp"] = np.ones(d.blocklen, dtype=np.complex128)

    # Post processing:  lowpass filter + deemp
    SF["FVideo"] = SF["Fvideo_lpf"] * SF["Fdeemp"]

    # additional filters:  0.5mhz and color burst
    # Using an FIR filter here to get a known delay
    F0_5 = sps.firwin(F05_TAPS, [0.5 / d.freq_half], pass_zero=True)
    F0_5_fft = d.fft((F0_5, [1.0]))
    SF["FVideo05"] = SF["Fvideo_lpf"] * SF["Fdeemp"] * F0_5_fft

    # NTSC fine sync reference: the color burst band around fsc (3.58mhz)
    SF["Fburst"] = d.fft(sps.butter(1, d.notchrange(SP.fsc_mhz, 0.1), "bandpass"))
    SF["FVideoBurst"] = SF["Fvideo_lpf"] * SF["Fdeemp"] * SF["Fburst"]

    if system == "PAL":
        SF["Fpilot"] = d.fft(sps.butter(1, d.notchrange(SP.pilot_mhz, 0.1), btype="bandpass"))
        SF["FVideoPilot"] = SF["Fvideo_lpf"] * SF["Fdeemp"] * SF["Fpilot"]

    # Invalid edge lengths.  The demodulator only looks at adjacent samples, so a
    # second phase chain reaches as far as the product of RFVideo and its own filter.
    chains = {
        "Frfhpf": SF["Frfhpf"],
        "RFVideo": SF["RFVideo"],
    }
    for name in ["FVideo", "FVideoBurst", "FVideoPilot"]:
        if name in SF:
            chains[name] = SF["RFVideo"] * SF[name]

    # demod_05 is rolled back by the FIR delay, which moves its response ahead
    chains["FVideo05"] = SF["RFVideo"] * delay_filter(SF["FVideo05"], -F05_OFFSET)

    settle = {}
    settle_end = {}
    for name, chain in chains.items():
        settle[name], settle_end[name] = edge_lengths(chain)

    return SF, settle, settle_end


def computeaudiofilters(SP, DP, d):
    """ Build the two-stage analog audio filters.  Returns (channels, fdiv, settle, settle_end).

    The audio signal path reduces a multi-msps signal down to <100khz in two stages:
    stage 1 demodulates each block from a slice of its FFT, stage 2 runs on a whole
    frame's worth of stage 1 output.
    """
    apass = DP.audio_filterwidth
    afilt_len = int(DP.audio_filterorder)

    channels = {}
    settle = 0
    settle_end = 0
    fdiv = 0

    for channel, center_freq in zip(["left", "right"], [SP.audio_lfreq, SP.audio_rfreq]):
        # Build an FIR filter for each channel's RF
        audio1_taps = sps.firwin(
            afilt_len,
            d.notchrange(center_freq, apass, True),
            pass_zero=False,
        )
        audio1_fir = d.fft([audio1_taps, 1.0])
        head, tail = edge_lengths(audio1_fir)
        settle = max(settle, head)
        settle_end = max(settle_end, tail)

        # Determine the frequency offset (a1_freq) and bins (lowbin+nbin) that cover the audio RF
        # frequencies for this channel
        lowbin, nbins, a1_freq = fft_determine_slices(
            center_freq, AUDIO_MIN_BANDWIDTH, d.freq_hz, d.blocklen
        )

        # Add the demodulated output to this to get the actual audio wave frequency
        low_freq = d.freq_hz * (lowbin / d.blocklen)

        ac = AudioChannelFilter(center_freq, lowbin, nbins, a1_freq, low_freq, d.blocklen)

        # Build a 'short' hilbert transform around the sliced FFT, then
        # create the stage 1 demodulation filter
        ac.filt1 = ac.slice(audio1_fir) * build_hilbert(nbins)
        ac.filt1.setflags(write=False)

        # Compute stage 2 audio filters: 20k-ish LPF and deemphasis.
        N, Wn = sps.buttord(20000 / (a1_freq / 2), 24000 / (a1_freq / 2), 1, 9)
        audio2_lpf = filtfft_sos(sps.butter(N, Wn, output="sos"), d.blocklen)
        if DP.audio_deemp_low > 0 and DP.audio_deemp_high > 0:
            audio2_deemp = d.fft(emphasis_iir(DP.audio_deemp_low, DP.audio_deemp_high, a1_freq))
        else:
            audio2_deemp = np.ones(d.blocklen, dtype=np.complex128)
        ac.audio2_filter = audio2_lpf * audio2_deemp
        ac.audio2_filter.setflags(write=False)

        channels[channel] = ac

        # Compute the sample rate decimation caused by stage 1 binning
        fdiv = d.blocklen // nbins

    return channels, fdiv, settle, settle_end


def computeefmfilter(freq_hz, blocklen):
    """Frequency-domain equalisation filter for the LaserDisc EFM signal.
    This was inspired by the input signal equaliser in WSJT-X, described in
    Steven J. Franke and Joseph H. Taylor, "The MSK144 Protocol for
    Meteor-Scatter Communication", QEX July/August 2017.
    <http://physics.princeton.edu/pulsar/k1jt/MSK144_Protocol_QEX.pdf>
    """

    # Frequency bands
    freqs = np.linspace(0.0e6, 1.9e6, num=11)
    freq_per_bin = freq_hz / blocklen
    # Amplitude and phase adjustments for each band.
    # These values were adjusted empirically based on a selection of NTSC and PAL samples.
    amp = np.array(
        [0.0, 0.215, 0.41, 0.73, 0.98, 1.03, 0.99, 0.81, 0.59, 0.42, 0.0]
    )
    phase = np.array(
        [0.0, -0.92, -1.03, -1.11, -1.2, -1.2, -1.2, -1.2, -1.05, -0.95, -0.8]
    )
    phase = phase * 1.25

    # Anything above the highest frequency is left as zero.
    coeffs = np.zeros(blocklen, dtype=complex)

    # Generate the frequency-domain coefficients by cubic interpolation between the equaliser values.
    a_interp = spi.interp1d(freqs, amp, kind="cubic")
    p_interp = spi.interp1d(freqs, phase, kind="cubic")

    nonzero_bins = min(int(freqs[-1] / freq_per_bin) + 1, blocklen)

    bin_freqs = np.minimum(np.arange(nonzero_bins) * freq_per_bin, freqs[-1])
    bin_amp = a_interp(bin_freqs)
    bin_phase = p_interp(bin_freqs)

    # Scale by the amplitude, rotate by the phase
    coeffs[:nonzero_bins] = bin_amp * (
        np.cos(bin_phase) + (complex(0, -1) * np.sin(bin_phase))
    )

    return coeffs * EFM_SCALE


def build_filterbank(
    SP,
    DP,
    freq_mhz,
    blocklen,
    system,
    decode_analog_audio=0,
    decode_digital_audio=False,
    ntsc_color_notch=False,
    blockcut=1024,
    blockcut_end=F05_OFFSET,
):
    """ (re)compute the full filter set for one parameter set.

    SP, DP    -- StandardParameters and DecoderParameters
    freq_mhz  -- RF sample rate (in Msps)
    blocklen  -- FFT length
    blockcut, blockcut_end -- the block overlap the EFM filter is fitted into
    """
    d = _Designer(freq_mhz, blocklen)

    filters, settle, settle_end = computevideofilters(SP, DP, d, system, ntsc_color_notch)

    audio = {}
    fdiv = 0
    # This is > 0 because decode_analog_audio is in khz (44.1, 48, 3xHSYNC, etc).
    if decode_analog_audio != 0:
        audio, fdiv, settle["audio"], settle_end["audio"] = computeaudiofilters(SP, DP, d)

    efm_delay = 0
    if decode_digital_audio:
        # The equaliser reaches both ways in time, so delay it until it fits the overlap
        Fefm = computeefmfilter(d.freq_hz, blocklen)
        efm_delay = fit_delay(Fefm, blockcut, blockcut_end)
        filters["Fefm"] = delay_filter(Fefm, efm_delay)
        settle["Fefm"], settle_end["Fefm"] = edge_lengths(filters["Fefm"])

    bank = FilterBank(
        filters,
        blocklen,
        d.freq_hz,
        settle=settle,
        settle_end=settle_end,
        audio=audio,
        F05_offset=F05_OFFSET,
        audio_fdiv=fdiv,
        efm_delay=efm_delay,
        MTF_basemult=DP.MTF_basemult,
    )

    logger.debug(
        "Computed %d filters for %s @ %.3f Msps, settle lengths %s / %s, efm delay %d",
        len(bank), system, freq_mhz, settle, settle_end, efm_delay,
    )

    return bank
