import dataclasses
import io
import unittest

import numpy as np
import pytest

from rfdecode import params
from rfdecode.errors import InvalidParameter, InvalidStandard


def test_derived_line_lengths():
    assert params.SysParams_NTSC.outlinelen == 910
    assert params.SysParams_PAL.outlinelen == 1135
    assert params.SysParams_PAL.outlinelen_pilot == 960


def test_derived_frame_rates():
    assert params.SysParams_NTSC.FPS == pytest.approx(30000 / 1001)
    assert params.SysParams_PAL.FPS == pytest.approx(25)
    assert params.SysParams_NTSC.line_period == pytest.approx(63.5556, abs=1e-4)


def test_derived_values_follow_replace():
    SP = dataclasses.replace(params.SysParams_PAL, line_period=32)

    assert SP.FPS == pytest.approx(50)
    assert SP.outlinelen == calc_outlinelen(SP)


def calc_outlinelen(SP):
    return int(np.round(SP.line_period * SP.fsc_mhz * 4))


def test_tables_are_frozen():
    with pytest.raises(dataclasses.FrozenInstanceError):
        params.RFParams_NTSC.video_lpf_freq = 1


def test_get_standard():
    assert params.get_standard("NTSC") is params.SysParams_NTSC
    assert params.get_standard("PAL") is params.SysParams_PAL

    with pytest.raises(InvalidStandard):
        params.get_standard("SECAM")


def test_lowband_selects_whole_table():
    assert params.get_decoder_params("NTSC", True) is params.RFParams_NTSC_lowband
    assert params.get_decoder_params("PAL", True) is params.RFParams_PAL_lowband
    assert params.get_decoder_params("PAL") is params.RFParams_PAL

    SP, DP = params.build_params("PAL", bool_overrides={"lowband": True})
    assert DP == dataclasses.replace(params.RFParams_PAL_lowband, deemp_low=0)


class OverrideTest(unittest.TestCase):
    def test_no_overrides(self):
        SP, DP = params.build_params("NTSC")

        self.assertEqual(SP, params.SysParams_NTSC)
        # without a deemp_low override, video de-emphasis is off
        self.assertEqual(DP, dataclasses.replace(params.RFParams_NTSC, deemp_low=0))

    def test_deemp_adjust_scales_both(self):
        table = params.RFParams_NTSC

        for k in (0, 0.5, 2.0, 3.25):
            SP, DP = params.build_params(
                "NTSC", float_overrides={"deemp_low": table.deemp_low, "deemp_adjust": k}
            )

            self.assertAlmostEqual(DP.deemp_low, table.deemp_low * k)
            self.assertAlmostEqual(DP.deemp_high, table.deemp_high * k)
            self.assertAlmostEqual(DP.audio_deemp_low, table.audio_deemp_low * k)
            self.assertAlmostEqual(DP.audio_deemp_high, table.audio_deemp_high * k)

    def test_deemp_adjust_must_not_be_negative(self):
        with self.assertRaises(InvalidParameter):
            params.build_params("NTSC", float_overrides={"deemp_adjust": -1})

    def test_deemp_low_falls_back_to_zero(self):
        SP, DP = params.build_params("NTSC", float_overrides={"deemp_adjust": 2.0})

        self.assertEqual(DP.deemp_low, 0)
        self.assertAlmostEqual(DP.deemp_high, 640e-9)

    def test_deemp_low_zero_disables(self):
        SP, DP = params.build_params("PAL", float_overrides={"deemp_low": -1})

        self.assertEqual(DP.deemp_low, 0)
        self.assertEqual(DP.deemp_high, params.RFParams_PAL.deemp_high)

    def test_deemp_high_override(self):
        SP, DP = params.build_params("PAL", float_overrides={"deemp_high": 500e-9})

        self.assertEqual(DP.deemp_low, 0)
        self.assertEqual(DP.deemp_high, 500e-9)

    def test_audio_filterwidth(self):
        SP, DP = params.build_params("NTSC", float_overrides={"audio_filterwidth": 0})
        self.assertEqual(DP.audio_filterwidth, params.RFParams_NTSC.audio_filterwidth)

        SP, DP = params.build_params("NTSC", float_overrides={"audio_filterwidth": 200000})
        self.assertEqual(DP.audio_filterwidth, 200000)

        with self.assertRaises(InvalidParameter):
            params.build_params("NTSC", float_overrides={"audio_filterwidth": -5})

    def test_field_overrides(self):
        SP, DP = params.build_params(
            "NTSC",
            int_overrides={"video_lpf_order": 4},
            float_overrides={"video_lpf_freq": 4200000, "ire0": 8000000},
        )

        self.assertEqual(DP.video_lpf_order, 4)
        self.assertIsInstance(DP.video_lpf_order, int)
        self.assertEqual(DP.video_lpf_freq, 4200000)
        self.assertEqual(SP.ire0, 8000000)

        # the source tables stay untouched
        self.assertEqual(params.RFParams_NTSC.video_lpf_order, 6)
        self.assertEqual(params.SysParams_NTSC.ire0, 8100000)

    def test_line_period_override_wins_over_subcarrier(self):
        SP, DP = params.build_params("NTSC", float_overrides={"line_period": 64})

        self.assertEqual(SP.line_period, 64)
        self.assertIsNone(SP.fsc_cycles_per_line)
        self.assertAlmostEqual(SP.line_freq_mhz, 1 / 64)

    def test_invalid_overrides(self):
        with self.assertRaises(InvalidParameter):
            params.build_params("NTSC", float_overrides={"no_such_option": 1.0})

        with self.assertRaises(InvalidParameter):
            params.build_params("NTSC", bool_overrides={"no_such_switch": True})

        with self.assertRaises(InvalidParameter):
            params.build_params("NTSC", int_overrides={"video_bpf_order": 0})

        with self.assertRaises(InvalidParameter):
            params.build_params("NTSC", float_overrides={"video_bpf_order": 2.5})

        with self.assertRaises(InvalidParameter):
            params.build_params("NTSC", float_overrides={"video_bpf_low": 20000000})

        with self.assertRaises(InvalidParameter):
            params.build_params("NTSC", float_overrides={"MTF_poledist": 1.5})

    def test_engine_options_pass_through(self):
        SP, DP = params.build_params("NTSC", float_overrides={"MTF_level": 2.0, "MTF_offset": 0.1})

        self.assertEqual(DP, params.build_params("NTSC")[1])


class JSONOverrideTest(unittest.TestCase):
    def test_load(self):
        fp = io.StringIO(
            '{"sys_params": {"ire0": 8000000.0},'
            ' "rf_params": {"video_lpf_order": 5, "deemp_adjust": 1.5},'
            ' "options": {"lowband": true}}'
        )

        bools, ints, floats = params.load_overrides_json(fp)

        self.assertEqual(bools, {"lowband": True})
        self.assertEqual(ints, {"video_lpf_order": 5})
        self.assertEqual(floats, {"ire0": 8000000.0, "deemp_adjust": 1.5})

        SP, DP = params.build_params("NTSC", False, bools, ints, floats)
        self.assertEqual(DP.video_lpf_order, 5)
        self.assertEqual(DP.video_bpf_low, params.RFParams_NTSC_lowband.video_bpf_low)
        self.assertEqual(DP.deemp_low, 0)
        self.assertAlmostEqual(DP.deemp_high, 480e-9)

    def test_empty(self):
        self.assertEqual(params.load_overrides_json(io.StringIO("{}")), ({}, {}, {}))

    def test_bad_value(self):
        with self.assertRaises(InvalidParameter):
            params.load_overrides_json(io.StringIO('{"rf_params": {"video_lpf_freq": "high"}}'))
