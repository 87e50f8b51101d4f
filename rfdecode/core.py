import logging

# standard numeric/scientific libraries
import numpy as np

# Use standard numpy fft, since it's thread-safe
import numpy.fft as npfft

# internal libraries

from . import audio
from .errors import BlockSizeMismatch, InconsistentConfiguration, InvalidParameter
from .filters import build_filterbank, F05_OFFSET
from .params import build_params
from .utils import calczc, gen_wave_at_frequency, genwave, hilbert_phase, sqsum, tau, unwrap_hilbert

logger = logging.getLogger("rfdecode")

BLOCKSIZE = 32 * 1024

# Samples at the start of each block left invalid by filter settling.  This is
# also the overlap (with blockcut_end) between consecutive blocks.
BLOCKCUT = 1024

# The synthetic test signal used by computedelays spans this many samples
DELAY_BLOCKLEN = 8192


class PhaseUnwrapper:
    """ Keeps carrier phase continuous from one block to the next.

    Each block's phase is unwrapped on its own, so it starts somewhere in
    (-pi, pi].  stitch() moves it by a whole number of turns so that it carries
    on from the last sample of the previous block.  Blocks must be stitched in
    input order.
    """

    def __init__(self):
        self.last = None

    def reset(self):
        self.last = None

    def stitch(self, phase):
        phase = np.asarray(phase, dtype=np.float64)
        if not len(phase):
            return phase

        if self.last is not None:
            # predict the first sample from the local slope
            step = phase[1] - phase[0] if len(phase) > 1 else 0
            offset = tau * np.round(((self.last + step) - phase[0]) / tau)
            phase = phase + offset

        self.last = phase[-1]

        return phase


class RFDecode:
    """The core RF decoding code.

    This decoder uses FFT overlap-save processing(1) to allow for parallel processing and combination of
    operations.

    Video filter signal path:
    - FFT/iFFT stage 1: RF BPF (i.e. 3.5-13.5mhz NTSC) * hilbert filter
    - phase unwrapping
    - FFT stage 2, which is processed into multiple final products:
      - Regular video output
      - 0.5mhz LPF (used for HSYNC)
      - For fine-tuning HSYNC: NTSC: 3.5x mhz filtered signal, PAL: 3.75mhz pilot signal

    Analogue audio filter signal path:

        The audio signal path is actually more complex in some ways, since it reduces a
        multi-msps signal down to <100khz.  A two stage processing system is used which
        reduces the frequency in each stage.

        Stage 1 performs the audio RF demodulation per block typically with 32x decimation,
        while stage 2 is run once the entire frame is demodulated and decimates by 4x.

    EFM filtering simply applies RF front end filters that massage the output so that ld-process-efm
    can do the actual work.

    references:
    1 - https://en.wikipedia.org/wiki/Overlap–save_method

    """

    def __init__(
        self,
        inputfreq=40,
        system="NTSC",
        blocklen=BLOCKSIZE,
        decode_digital_audio=False,
        decode_analog_audio=0,
        has_analog_audio=True,
        extra_bools=None,
        extra_ints=None,
        extra_floats=None,
    ):
        """Initialize the RF decoder object.

        inputfreq -- frequency of raw RF data (in Msps)
        system    -- Which system is in use (PAL or NTSC)
        blocklen  -- Block length for FFT processing
        decode_digital_audio -- Whether to apply EFM filtering
        decode_analog_audio  -- Whether or not to decode analog(ue) audio (output rate in khz, 0 disables)
        has_analog_audio     -- Whether or not analog(ue) audio channels are on the disk

        extra_bools -- Dictionary of boolean options - these include:
          - PAL_V4300D_NotchFilter - cut 8.5mhz spurious signal
          - NTSC_ColorNotchFilter:  notch filter on decoded video to reduce color 'wobble'
          - lowband: Substitute different decode settings for lower-bandwidth disks
        extra_ints, extra_floats -- Parameter overrides (DecoderParameters/StandardParameters
          field names, plus audio_filterwidth, deemp_adjust, deemp_low, deemp_high,
          MTF_level and MTF_offset)
        """
        extra_bools = dict(extra_bools or {})
        extra_ints = dict(extra_ints or {})
        extra_floats = dict(extra_floats or {})

        if isinstance(blocklen, bool) or int(blocklen) != blocklen:
            raise InvalidParameter("blocklen must be an integer, got %r" % (blocklen,))

        self.blocklen = int(blocklen)
        self.blockcut = BLOCKCUT
        self.blockcut_end = F05_OFFSET
        self.system = system

        self.setupcount = 0

        if self.blocklen % 2 or self.blocklen <= (2 * self.blockcut) + self.blockcut_end:
            raise InvalidParameter(
                "blocklen must be even and larger than %d, got %d"
                % ((2 * self.blockcut) + self.blockcut_end, self.blocklen)
            )

        if not inputfreq > 0:
            raise InvalidParameter("inputfreq must be positive, got %r" % (inputfreq,))

        self.NTSC_ColorNotchFilter = extra_bools.get("NTSC_ColorNotchFilter", False)
        self.PAL_V4300D_NotchFilter = extra_bools.get("PAL_V4300D_NotchFilter", False)
        self.lowband = extra_bools.get("lowband", False)

        freq = inputfreq
        self.freq = freq
        self.freq_half = freq / 2
        self.freq_hz = self.freq * 1000000
        self.freq_hz_half = self.freq_hz / 2

        self.mtf_mult = extra_floats.get("MTF_level", 1.0)
        self.mtf_offset = extra_floats.get("MTF_offset", 0)

        if decode_analog_audio and not has_analog_audio:
            raise InconsistentConfiguration("Analog audio decoding requested, but the source has no analog audio")

        self.decode_digital_audio = decode_digital_audio
        self.decode_analog_audio = decode_analog_audio

        extra_bools["analog_audio"] = has_analog_audio

        # kept so that later changes are applied on top of the same tables
        self.overrides = (extra_bools, extra_ints, extra_floats)

        self.SysParams, self.DecoderParams = build_params(
            system, self.lowband, extra_bools, extra_ints, extra_floats
        )
        self.check_params(self.SysParams, self.DecoderParams)

        self.Filters = None

        self.unwrapper = PhaseUnwrapper()

        self.computefilters()

    def check_params(self, SP, DP):
        """ Make sure every filter edge fits below the Nyquist frequency of the input """
        nyquist = self.freq_hz_half
        edges = {
            "video_bpf_high": DP.video_bpf_high,
            "video_lpf_freq": DP.video_lpf_freq,
            "video_hpf_freq": DP.video_hpf_freq,
            "MTF_freq": DP.MTF_freq * 1000000,
            "fsc_mhz": (SP.fsc_mhz + 0.1) * 1000000,
            "pilot_mhz": (SP.pilot_mhz + 0.1) * 1000000,
        }

        if self.decode_analog_audio or SP.analog_audio:
            width = max(DP.audio_filterwidth, DP.audio_notchwidth)
            edges["audio_lfreq"] = SP.audio_lfreq + width
            edges["audio_rfreq"] = SP.audio_rfreq + width

        for name, edge in edges.items():
            if edge >= nyquist:
                raise InvalidParameter(
                    "%s (%.0f hz) is above the Nyquist frequency of a %s msps input" % (name, edge, self.freq)
                )

    def computefilters(self):
        """ (re)compute the filter sets.

        A new FilterBank is built and then swapped in, so a bank handed to a
        worker is never modified underneath it.
        """
        bank = build_filterbank(
            self.SysParams,
            self.DecoderParams,
            self.freq,
            self.blocklen,
            self.system,
            decode_analog_audio=self.decode_analog_audio,
            decode_digital_audio=self.decode_digital_audio,
            ntsc_color_notch=self.NTSC_ColorNotchFilter,
            blockcut=self.blockcut,
            blockcut_end=F05_OFFSET,
        )

        if bank.max_settle() > self.blockcut:
            raise InconsistentConfiguration(
                "Filters need %d samples to settle, but blocks only overlap by %d (settle lengths: %s)"
                % (bank.max_settle(), self.blockcut, bank.settle)
            )

        # The 0.5mhz filter is rolled back to align with the data, so there
        # are a few unusable samples at the end.
        if bank.max_settle_end() > bank.F05_offset:
            raise InconsistentConfiguration(
                "Filters reach %d samples past the end of a block, but only %d are cut (tail lengths: %s)"
                % (bank.max_settle_end(), bank.F05_offset, bank.settle_end)
            )

        bank.setupcount = self.setupcount + 1
        bank.mtf_mult = self.mtf_mult
        bank.mtf_offset = self.mtf_offset

        self.computedelays(filters=bank)

        self.setupcount = bank.setupcount
        self.blockcut_end = bank.F05_offset
        self.Filters = bank

        linelen = self.freq_hz / (1000000.0 / self.SysParams.line_period)
        self.linelen = int(np.round(linelen))

        return bank

    synthesize = computefilters

    @property
    def delays(self):
        return self.Filters.delays if self.Filters is not None else None

    @property
    def limits(self):
        return self.Filters.limits if self.Filters is not None else None

    def set_decoder_params(self, **changes):
        """ Apply new parameter values (same names as the override maps) and resynthesize.

        Changes are merged into the overrides the decoder was built with and the
        parameters are rebuilt from the tables, so e.g. deemp_adjust never compounds.
        On failure the previous parameters and filters stay in place.
        """
        mtf_mult = changes.pop("MTF_level", self.mtf_mult)
        mtf_offset = changes.pop("MTF_offset", self.mtf_offset)

        bools, ints, floats = self.overrides
        floats = dict(floats, **changes)

        SP, DP = build_params(self.system, self.lowband, bools, ints, floats)
        self.check_params(SP, DP)

        old = self.SysParams, self.DecoderParams, self.mtf_mult, self.mtf_offset
        self.SysParams, self.DecoderParams = SP, DP
        self.mtf_mult, self.mtf_offset = mtf_mult, mtf_offset

        try:
            bank = self.computefilters()
        except Exception:
            self.SysParams, self.DecoderParams, self.mtf_mult, self.mtf_offset = old
            raise

        self.overrides = (bools, ints, floats)

        return bank

    def iretohz(self, ire):
        return self.SysParams.ire0 + (self.SysParams.hz_ire * ire)

    def hztoire(self, hz):
        return (hz - self.SysParams.ire0) / self.SysParams.hz_ire

    def hz_to_output(self, hz):
        """ Convert demodulated Hz to 16-bit output levels (sync tip at outputZero) """
        SP = self.SysParams

        reduced = (np.asarray(hz, dtype=np.double) - SP.ire0) / SP.hz_ire
        reduced -= SP.vsync_ire

        return (np.clip((reduced * SP.out_scale) + SP.outputZero, 0, 65535) + 0.5).astype(np.uint16)

    def compute_mtf_level(self, mtf_level, filters=None):
        SF = filters if filters is not None else self.Filters

        return SF.mtf_level(mtf_level)

    def demodblock(self, data=None, mtf_level=0, fftdata=None, cut=False, filters=None):
        """ Demodulate one block of RF data (or its FFT).

        filters -- FilterBank to use (default: the current one)
        cut     -- trim the outputs to the valid [blockcut, blocklen - blockcut_end) region
        """
        SF = filters if filters is not None else self.Filters
        mtf_level = self.compute_mtf_level(mtf_level, SF)

        return self.demodblock_cpu(data, mtf_level, fftdata, cut, SF)

    def _v4300d_notch(self, indata_fft):
        """ This routine works around an 'interesting' issue seen with LD-V4300D players and
            some PAL digital audio disks, where there is a signal somewhere between 8.47 and 8.57mhz.

            The idea here is to look for anomolies (3 std deviations) and snip them out of the
            FFT.  There may be side effects, however, but generally minor compared to the
            'wibble' itself and only in certain cases.
        """
        if 8.6 >= self.freq_half:
            return indata_fft

        sl = slice(
            int(self.blocklen * (8.42 / self.freq)),
            int(1 + (self.blocklen * (8.6 / self.freq))),
        )
        sq_sl = sqsum(indata_fft[sl])
        m = np.mean(sq_sl) + (np.std(sq_sl) * 3)

        hits = np.where(sq_sl > m)[0]
        if len(hits):
            logger.debug("V4300D notch: removing %d bins", len(hits))

        for i in hits:
            for b in (i - 1 + sl.start, i + sl.start, i + 1 + sl.start):
                indata_fft[b] = 0
                indata_fft[self.blocklen - b] = 0

        return indata_fft

    def rfvideo_hilbert(self, indata_fft, mtf_level=0, filters=None):
        """ Band limit one RF block's FFT and return its analytic signal """
        SF = filters if filters is not None else self.Filters

        if self.system == "PAL" and self.PAL_V4300D_NotchFilter:
            indata_fft = self._v4300d_notch(indata_fft)

        indata_fft_filt = indata_fft * SF["RFVideo"]

        if mtf_level != 0:
            indata_fft_filt *= SF["MTF"] ** mtf_level

        return npfft.ifft(indata_fft_filt)

    def demodblock_cpu(self, data=None, mtf_level=0, fftdata=None, cut=False, filters=None):
        SF = filters if filters is not None else self.Filters

        if fftdata is not None:
            if len(fftdata) != self.blocklen:
                raise BlockSizeMismatch("FFT block has %d bins, expected %d" % (len(fftdata), self.blocklen))
            indata_fft = np.array(fftdata, dtype=np.complex128)
        elif data is not None:
            if len(data) != self.blocklen:
                raise BlockSizeMismatch("block has %d samples, expected %d" % (len(data), self.blocklen))
            indata_fft = npfft.fft(data)
        else:
            raise ValueError("demodblock called without raw or FFT data")

        rv = {}

        cut_end = self.blocklen - self.blockcut_end
        cutter = (lambda x: x[self.blockcut : cut_end]) if cut else (lambda x: x)

        rotdelay = 0
        if SF.delays is not None:
            rotdelay = int(np.clip(SF.delays["video_rot"], -self.blockcut_end, self.blockcut))

        rfhpf = npfft.ifft(indata_fft * SF["Frfhpf"]).real
        if cut:
            rfhpf = rfhpf[self.blockcut - rotdelay : cut_end - rotdelay]
        rv["rfhpf"] = rfhpf.astype(np.float32)

        hilbert = self.rfvideo_hilbert(indata_fft, mtf_level, SF)
        demod = unwrap_hilbert(hilbert, self.freq_hz)

        rv["phase"] = cutter(hilbert_phase(hilbert))

        # use a clipped demod for video output processing to reduce speckling impact
        demod_fft = npfft.fft(np.clip(demod, 1500000, self.freq_hz * 0.75))

        out_video = npfft.ifft(demod_fft * SF["FVideo"]).real

        out_video05 = npfft.ifft(demod_fft * SF["FVideo05"]).real
        out_video05 = np.roll(out_video05, -SF.F05_offset)

        out_videoburst = npfft.ifft(demod_fft * SF["FVideoBurst"]).real

        if self.system == "PAL":
            out_videopilot = npfft.ifft(demod_fft * SF["FVideoPilot"]).real
            video_out = np.rec.array(
                [
                    out_video.astype(np.float32),
                    demod.astype(np.float32),
                    out_video05.astype(np.float32),
                    out_videoburst.astype(np.float32),
                    out_videopilot.astype(np.float32),
                ],
                names=[
                    "demod",
                    "demod_raw",
                    "demod_05",
                    "demod_burst",
                    "demod_pilot",
                ],
            )
        else:
            video_out = np.rec.array(
                [out_video.astype(np.float32), demod.astype(np.float32), out_video05.astype(np.float32), out_videoburst.astype(np.float32)],
                names=["demod", "demod_raw", "demod_05", "demod_burst"],
            )

        rv["video"] = cutter(video_out)

        if self.decode_digital_audio:
            # lags the input by SF.efm_delay samples
            efm_out = npfft.ifft(indata_fft * SF["Fefm"])
            rv["efm"] = np.int16(np.clip(cutter(efm_out.real), -32768, 32767))

        if self.decode_analog_audio:
            stage1_out = []
            for channel in ['left', 'right']:
                afilter = SF.audio[channel]

                # Apply first stage audio filter
                a1 = npfft.ifft(afilter.slice(indata_fft) * afilter.filt1)
                # Demodulate and restore frequency after bin slicing
                a1u = unwrap_hilbert(a1, afilter.a1_freq) + afilter.low_freq

                stage1_out.append(a1u.astype(np.float32))

            audio_out = np.rec.array(stage1_out, names=["audio_left", "audio_right"])

            fdiv = SF.audio_fdiv
            rv["audio"] = (
                audio_out[self.blockcut // fdiv : cut_end // fdiv]
                if cut
                else audio_out
            )

        rv["setupcount"] = SF.setupcount
        rv['mtf_level'] = mtf_level

        return rv

    def process_block(self, block, mtf_level=0):
        """ Demodulate the next block of the capture, keeping phase continuous.

        Blocks must be handed in in input order, overlapping by blockcut + blockcut_end.
        """
        rv = self.demodblock(data=block, mtf_level=mtf_level, cut=True)
        rv["phase"] = self.unwrapper.stitch(rv["phase"])

        return rv

    # Second phase audio filtering.  This works on a whole frame's samples, since
    # the frequency has already been reduced.

    def audio_phase2(self, frame_audio, mtf_level=0):
        if not self.decode_analog_audio:
            raise InconsistentConfiguration("audio_phase2 called without analog audio decoding enabled")

        return audio.audio_phase2(self, frame_audio, mtf_level)

    finish_audio_frame = audio_phase2

    def computedelays(self, mtf_level=0, filters=None):
        """Generate a fake signal and compute filter delays.

        The results are stored on the filter bank (by default the current one).

        mtf_level -- Specify the amount of MTF compensation needed (default 0.0)
                     WARNING: May not actually work.
        """

        rf = self
        filterset = filters if filters is not None else rf.Filters

        if rf.blocklen < DELAY_BLOCKLEN:
            logger.debug("Block length %d too short to measure filter delays", rf.blocklen)
            filterset.delays = {"video_sync": 0, "video_white": 0, "video_rot": 0}
            filterset.limits = None
            return None, None

        fakeoutput = np.zeros(rf.blocklen, dtype=np.double)

        vsync_ire = rf.SysParams.vsync_ire
        hz_ire = rf.SysParams.hz_ire

        # set base level to black
        fakeoutput[:] = rf.iretohz(0)

        synclen_full = int(4.7 * rf.freq)

        # sync 1 (used for gap determination)
        fakeoutput[1500 : 1500 + synclen_full] = rf.iretohz(vsync_ire)
        # sync 2 (used for pilot/rot level setting)
        fakeoutput[2000 : 2000 + synclen_full] = rf.iretohz(vsync_ire)

        porch_end = 2000 + synclen_full + int(0.6 * rf.freq)
        burst_end = porch_end + int(1.2 * rf.freq)

        fsc_mhz = rf.SysParams.fsc_mhz

        fakeoutput[porch_end:burst_end] += (
            gen_wave_at_frequency(fsc_mhz, rf.freq, burst_end - porch_end) * hz_ire * 20
        )

        # white
        fakeoutput[3000:3500] = rf.iretohz(100)

        # white + burst
        fakeoutput[4500:5000] = rf.iretohz(100)

        fakeoutput[4200:5500] += (
            gen_wave_at_frequency(fsc_mhz, rf.freq, 5500 - 4200) * hz_ire * 20
        )

        fakeoutput[2000 : 2000 + synclen_full] = rf.iretohz(vsync_ire) + (
            gen_wave_at_frequency(fsc_mhz, rf.freq, synclen_full) * hz_ire * vsync_ire
        )

        # add filters to generate a fake signal

        # NOTE: group pre-delay is not implemented, so the decoded signal
        # has issues settling down.  Emphasis is correct AFAIK

        tmp = npfft.fft(fakeoutput)
        tmp2 = tmp * filterset["Fvideo_lpf"]
        tmp3 = tmp2 * filterset["Femp"]

        fakeoutput_emp = npfft.ifft(tmp3).real

        fakesignal = genwave(fakeoutput_emp, rf.freq_hz / 2)
        fakesignal *= 4096
        fakesignal += 8192
        # a short dropout, used to measure the rot detector delay
        fakesignal[6000:6005] = 0

        fakedecode = rf.demodblock_cpu(fakesignal, mtf_level=mtf_level, filters=filterset)

        vdemod = fakedecode["video"]["demod"]
        vdemod_raw = fakedecode["video"]["demod_raw"]
        vsync_cross_hz = rf.iretohz(vsync_ire / 2)

        def zc_delay(start, level):
            zc = calczc(vdemod, start, level, count=512)
            if zc is None:
                logger.warning("computedelays: no crossing of %.0f hz found after sample %d", level, start)
                return 0

            return zc - start

        # XXX: sync detector does NOT reflect actual sync detection, just regular filtering @ sync level
        # (but only regular filtering is needed for DOD)
        delays = {}
        delays["video_sync"] = zc_delay(1500, vsync_cross_hz)
        delays["video_white"] = zc_delay(3000, rf.iretohz(50))
        delays["video_rot"] = int(np.round(zc_delay(6000, rf.iretohz(-10))))
        filterset.delays = delays

        limits = {}
        limits["sync"] = (
            np.min(vdemod_raw[1400:2800]),
            np.max(vdemod_raw[1400:2800]),
        )
        limits["viewable"] = (
            np.min(vdemod_raw[2900:6000]),
            np.max(vdemod_raw[2900:6000]),
        )
        filterset.limits = limits

        logger.debug("Filter delays: %s", delays)

        return fakedecode, fakeoutput_emp
