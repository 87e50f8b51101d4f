import unittest

import numpy as np

from rfdecode.core import RFDecode
import rfdecode.utils as utils


class DemodTest(unittest.TestCase):
    def check_ire(self, system):
        """Check that the IRE of the output corresponds to the correct frequencies."""
        samplerate_mhz = 40
        decoder = RFDecode(inputfreq=samplerate_mhz, system=system)

        # Reference white and sync tip
        max_hz = decoder.iretohz(100)
        min_hz = decoder.iretohz(decoder.SysParams.vsync_ire)

        wavemax = utils.gen_wave_at_frequency(
            max_hz / 1000000, samplerate_mhz, decoder.blocklen // 2
        )
        wavemin = utils.gen_wave_at_frequency(
            min_hz / 1000000, samplerate_mhz, decoder.blocklen // 2
        )
        wave = np.concatenate((wavemax, wavemin))
        demod = decoder.demodblock(data=wave)["video"]["demod"]

        max_demod = demod[1000 : (decoder.blocklen // 2) - 1000]
        np.testing.assert_allclose(max_demod, np.full(len(max_demod), max_hz), rtol=1.5e-04, atol=20)
        min_demod = demod[(decoder.blocklen // 2) + 1000 : decoder.blocklen - 1000]
        # Demodulated signal fluctuates more at the sync end than at the top end,
        # so allowing a little more tolerance here.
        np.testing.assert_allclose(min_demod, np.full(len(min_demod), min_hz), rtol=3e-04, atol=20)

    def test_ire_pal(self):
        self.check_ire("PAL")

    def test_ire_ntsc(self):
        self.check_ire("NTSC")

    def test_hztoire_roundtrip(self):
        decoder = RFDecode(inputfreq=40, system="NTSC")

        for ire in (-40, 0, 7.5, 100):
            self.assertAlmostEqual(decoder.hztoire(decoder.iretohz(ire)), ire)


if __name__ == "__main__":
    unittest.main()
