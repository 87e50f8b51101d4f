import unittest

import numpy as np
import pytest

from rfdecode import filters, params
from rfdecode.utils import build_hilbert, delay_filter, edge_lengths, fit_delay, settle_length, settle_length_end


def ntsc_bank(**kwargs):
    return filters.build_filterbank(
        params.SysParams_NTSC, params.RFParams_NTSC, 40, 32768, "NTSC", **kwargs
    )


def pal_bank(**kwargs):
    return filters.build_filterbank(
        params.SysParams_PAL, params.RFParams_PAL, 40, 32768, "PAL", **kwargs
    )


class FilterBankTest(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.ntsc = ntsc_bank(decode_analog_audio=44100, decode_digital_audio=True)
        cls.pal = pal_bank(decode_analog_audio=44100)

    def test_lengths(self):
        for bank in (self.ntsc, self.pal):
            for name, filt in bank.items():
                self.assertEqual(filt.shape, (32768,), name)

    def test_contents(self):
        for name in ("RFVideo", "MTF", "Frfhpf", "FVideo", "FVideo05", "FVideoBurst", "Fefm", "Fcutl", "Fcutr"):
            self.assertIn(name, self.ntsc)

        self.assertNotIn("FVideoPilot", self.ntsc)
        self.assertIn("FVideoPilot", self.pal)
        self.assertNotIn("Fcutl", self.pal)
        self.assertNotIn("Fefm", self.pal)

    def test_read_only(self):
        with self.assertRaises(ValueError):
            self.ntsc["RFVideo"][0] = 1

        with self.assertRaises(TypeError):
            self.ntsc["RFVideo"] = np.ones(32768)

        with self.assertRaises(ValueError):
            self.ntsc.audio["left"].filt1[0] = 1

    def test_idempotent(self):
        again = ntsc_bank(decode_analog_audio=44100, decode_digital_audio=True)

        self.assertEqual(sorted(again), sorted(self.ntsc))
        for name in again:
            np.testing.assert_array_equal(again[name], self.ntsc[name])

        self.assertEqual(again.settle, self.ntsc.settle)

    def test_rfvideo_is_analytic(self):
        # The hilbert filter zeros out all negative frequencies
        rfvideo = self.ntsc["RFVideo"]
        self.assertTrue(np.all(rfvideo[(32768 // 2) + 1 :] == 0))
        self.assertAlmostEqual(np.abs(rfvideo[0]), 0, places=9)

    def test_video_dc_gain(self):
        # lowpass and deemphasis both pass DC untouched
        for bank in (self.ntsc, self.pal):
            self.assertAlmostEqual(np.abs(bank["FVideo"][0]), 1.0, places=6)
            self.assertAlmostEqual(np.abs(bank["FVideo05"][0]), 1.0, places=3)

    def test_settle(self):
        for bank in (self.ntsc, self.pal):
            self.assertIn("RFVideo", bank.settle)
            self.assertIn("audio", bank.settle)
            self.assertLessEqual(bank.max_settle(), 1024)
            self.assertGreater(bank.max_settle(), 0)

    def test_settle_end(self):
        for bank in (self.ntsc, self.pal):
            self.assertEqual(sorted(bank.settle_end), sorted(bank.settle))
            self.assertLessEqual(bank.max_settle_end(), filters.F05_OFFSET)

    def test_efm_fits_block_overlap(self):
        self.assertIn("Fefm", self.ntsc.settle)
        self.assertLessEqual(self.ntsc.settle["Fefm"], 1024)
        self.assertLessEqual(self.ntsc.settle_end["Fefm"], filters.F05_OFFSET)

        self.assertGreaterEqual(self.ntsc.efm_delay, 0)
        self.assertLess(self.ntsc.efm_delay, 1024)

        # delaying only rotates the phase of the equaliser
        undelayed = filters.computeefmfilter(40000000, 32768)
        np.testing.assert_allclose(np.abs(self.ntsc["Fefm"]), np.abs(undelayed), atol=1e-9)

    def test_audio_slices(self):
        self.assertEqual(self.ntsc.audio_fdiv, 32)

        for channel, freq in (("left", params.SysParams_NTSC.audio_lfreq), ("right", params.SysParams_NTSC.audio_rfreq)):
            afilter = self.ntsc.audio[channel]

            self.assertEqual(afilter.nbins, 1024)
            self.assertEqual(len(afilter.filt1), 1024)
            self.assertEqual(len(afilter.audio2_filter), 32768)
            self.assertAlmostEqual(afilter.a1_freq, 40000000 / 32)
            # the carrier sits inside the sliced band
            self.assertLess(afilter.low_freq, freq)
            self.assertGreater(afilter.low_freq + (afilter.a1_freq / 2), freq)

    def test_no_audio(self):
        bank = ntsc_bank()

        self.assertEqual(bank.audio, {})
        self.assertEqual(bank.audio_fdiv, 0)
        self.assertNotIn("audio", bank.settle)

    def test_audio_deemp_follows_params(self):
        def audio_bank(**overrides):
            SP, DP = params.build_params("NTSC", float_overrides=overrides)
            return filters.build_filterbank(SP, DP, 40, 32768, "NTSC", decode_analog_audio=44100)

        plain = audio_bank()

        # 10khz, in stage 2 bins
        b10k = int(round(10000 / plain.audio["left"].a1_freq * 32768))
        gain = lambda bank: np.abs(bank.audio["left"].audio2_filter[b10k])

        stronger = audio_bank(deemp_adjust=2.0)
        disabled = audio_bank(deemp_adjust=0)

        self.assertFalse(np.array_equal(plain.audio["left"].audio2_filter, stronger.audio["left"].audio2_filter))
        self.assertLess(gain(stronger), gain(plain))
        self.assertLess(gain(plain), gain(disabled))
        self.assertAlmostEqual(gain(disabled), 1.0, delta=0.15)

    def test_deemp_disabled(self):
        DP = params.apply_overrides(params.SysParams_PAL, params.RFParams_PAL, float_overrides={"deemp_low": 0})[1]
        bank = filters.build_filterbank(params.SysParams_PAL, DP, 40, 32768, "PAL")

        np.testing.assert_array_equal(bank["Fdeemp"], np.ones(32768))
        np.testing.assert_array_equal(bank["FVideo"], bank["Fvideo_lpf"])

    def test_color_notch(self):
        def lowband_bank(notch):
            return filters.build_filterbank(
                params.SysParams_NTSC,
                params.RFParams_NTSC_lowband,
                40,
                32768,
                "NTSC",
                ntsc_color_notch=notch,
            )

        plain = lowband_bank(False)
        notched = lowband_bank(True)

        # The notch covers the lowband lpf frequency (4.2mhz) up to 5mhz
        fsc_bin = int(round(params.SysParams_NTSC.fsc_mhz / 40 * 32768))
        self.assertLess(np.abs(notched["Fvideo_lpf"][fsc_bin + 800]), np.abs(plain["Fvideo_lpf"][fsc_bin + 800]))


class EFMFilterTest(unittest.TestCase):
    # 1000hz per bin puts the equaliser control points on exact bins
    blocklen = 40000
    freq_hz = 40000000

    def setUp(self):
        self.coeffs = filters.computeefmfilter(self.freq_hz, self.blocklen)

    def test_zero_above_max(self):
        self.assertEqual(len(self.coeffs), self.blocklen)
        self.assertTrue(np.all(self.coeffs[1901:] == 0))
        self.assertAlmostEqual(np.abs(self.coeffs[0]), 0, places=9)

    def test_control_points(self):
        amp = [0.0, 0.215, 0.41, 0.73, 0.98, 1.03, 0.99, 0.81, 0.59, 0.42, 0.0]
        phase = [0.0, -0.92, -1.03, -1.11, -1.2, -1.2, -1.2, -1.2, -1.05, -0.95, -0.8]

        for i, (a, p) in enumerate(zip(amp, phase)):
            c = self.coeffs[i * 190]
            self.assertAlmostEqual(np.abs(c), a * filters.EFM_SCALE, places=6)
            if a > 0:
                self.assertAlmostEqual(np.angle(c), -p * 1.25, places=6)


def test_settle_length_of_delay():
    # A pure 100 sample delay needs exactly 101 samples to settle
    impulse = np.zeros(4096)
    impulse[100] = 1

    assert settle_length(np.fft.fft(impulse)) == 101


def test_settle_length_of_passthrough():
    assert settle_length(np.ones(4096)) == 1
    assert settle_length_end(np.ones(4096)) == 0


def test_settle_length_end_of_advance():
    # a response 32 samples ahead of t=0 wraps into the last 32 samples
    impulse = np.zeros(4096)
    impulse[-32] = 1

    assert edge_lengths(np.fft.fft(impulse)) == (0, 32)


def test_fit_delay():
    impulse = np.zeros(4096)
    impulse[-100] = 1
    filt = np.fft.fft(impulse)

    delay = fit_delay(filt, 1024, 32)
    assert delay == 68

    assert edge_lengths(delay_filter(filt, delay)) == (0, 32)


def test_hilbert_needs_even_length():
    assert len(build_hilbert(1024)) == 1024

    with pytest.raises(ValueError):
        build_hilbert(1023)


def test_bad_filter_length():
    with pytest.raises(ValueError):
        filters.FilterBank({"x": np.ones(10)}, 20, 40000000)
