import unittest

import numpy as np

from rfdecode.core import RFDecode
from rfdecode.demodqueue import DemodQueue
from rfdecode.errors import BlockSizeMismatch
from rfdecode.utils import StridedCollector, iter_blocks, tau


def make_capture(rf, nblocks, hz=8200000.5):
    hop = rf.blocklen - rf.blockcut - rf.blockcut_end
    t = np.arange(rf.blocklen + (hop * (nblocks - 1)))

    return np.cos(tau * hz * t / rf.freq_hz) + (0.01 * np.sin(tau * 1000 * t / rf.freq_hz))


class DemodQueueTest(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.rf = RFDecode(inputfreq=40, system="NTSC")
        cls.capture = make_capture(cls.rf, 6)
        cls.blocks = list(iter_blocks(cls.capture, cls.rf))

    def setUp(self):
        self.rf.unwrapper.reset()

    def test_matches_sequential(self):
        expected = [self.rf.process_block(block) for block in self.blocks]
        self.rf.unwrapper.reset()

        with DemodQueue(self.rf, num_worker_threads=3) as queue:
            results = list(queue.run(self.blocks))

        self.assertEqual([r["blocknum"] for r in results], list(range(len(self.blocks))))

        for got, want in zip(results, expected):
            np.testing.assert_array_equal(got["video"]["demod"], want["video"]["demod"])
            np.testing.assert_array_equal(got["phase"], want["phase"])

    def test_submit_get_order(self):
        with DemodQueue(self.rf, num_worker_threads=4) as queue:
            nums = [queue.submit(block) for block in self.blocks]
            self.assertEqual(nums, list(range(len(self.blocks))))
            self.assertEqual(queue.pending(), len(self.blocks))

            phases = [queue.get()["phase"] for _ in nums]

        self.assertEqual(queue.pending(), 0)

        phase = np.concatenate(phases)
        np.testing.assert_allclose(np.diff(phase), tau * 8200000.5 / self.rf.freq_hz, atol=1e-3)

    def test_get_without_submit(self):
        with DemodQueue(self.rf, num_worker_threads=1) as queue:
            with self.assertRaises(ValueError):
                queue.get()

    def test_bad_block_size(self):
        with DemodQueue(self.rf, num_worker_threads=1) as queue:
            with self.assertRaises(BlockSizeMismatch):
                queue.submit(self.blocks[0][:-10])

            self.assertEqual(queue.pending(), 0)

    def test_worker_exception_is_reraised(self):
        with DemodQueue(self.rf, num_worker_threads=2) as queue:
            queue.submit(self.blocks[0])
            # an mtf_level that can't be multiplied fails inside the worker
            queue.submit(self.blocks[1], mtf_level="bad")
            queue.submit(self.blocks[2])

            first = queue.get()
            self.assertEqual(first["blocknum"], 0)

            with self.assertRaises(TypeError):
                queue.get()

            third = queue.get()
            self.assertEqual(third["blocknum"], 2)

    def test_filters_captured_at_submit(self):
        rf = RFDecode(inputfreq=40, system="NTSC")
        count = rf.setupcount

        with DemodQueue(rf, num_worker_threads=1) as queue:
            queue.submit(self.blocks[0])
            rf.set_decoder_params(video_lpf_freq=4000000)
            queue.submit(self.blocks[1])

            first = queue.get()
            second = queue.get()

        self.assertEqual(first["setupcount"], count)
        self.assertEqual(second["setupcount"], count + 1)

    def test_mtf_captured_at_submit(self):
        rf = RFDecode(inputfreq=40, system="NTSC")
        basemult = rf.DecoderParams.MTF_basemult

        with DemodQueue(rf, num_worker_threads=1) as queue:
            queue.submit(self.blocks[0], mtf_level=1)
            rf.set_decoder_params(MTF_level=2.0)
            queue.submit(self.blocks[1], mtf_level=1)

            first = queue.get()
            second = queue.get()

        self.assertAlmostEqual(first["mtf_level"], basemult)
        self.assertAlmostEqual(second["mtf_level"], 2 * basemult)

    def test_end_is_idempotent(self):
        queue = DemodQueue(self.rf, num_worker_threads=2)
        queue.end()
        queue.end()

        self.assertTrue(queue.ended)
        with self.assertRaises(RuntimeError):
            queue.submit(self.blocks[0])


def test_strided_collector():
    collector = StridedCollector(blocklen=100, cut_begin=10, cut_end=5)

    assert not collector.add(np.arange(50))
    assert collector.add(np.arange(50, 250))

    first = collector.get_block()
    second = collector.get_block()

    np.testing.assert_array_equal(first, np.arange(100))
    # blocks overlap by cut_begin + cut_end
    np.testing.assert_array_equal(second, np.arange(85, 185))

    assert collector.get_block() is None
