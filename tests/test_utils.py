import io
import logging

import numpy as np
import pytest

from rfdecode import utils
from rfdecode.utils_logging import init_logging, progress_line
from rfdecode.utils_plotting import print_crossings, todb


def test_calczc():
    data = np.array([0.0, 1.0, 2.0, 3.0, 4.0, 5.0])

    assert utils.calczc(data, 1, 2.5) == pytest.approx(2.5)
    assert utils.calczc(data, 1, 10) is None

    falling = data[::-1].copy()
    assert utils.calczc(falling, 1, 2.5, edge=-1) == pytest.approx(2.5)


def test_unwrap_hilbert_tone():
    freq_hz = 40000000
    hz = 5000000
    t = np.arange(4096)

    analytic = np.exp(1j * utils.tau * hz * t / freq_hz)
    demod = utils.unwrap_hilbert(analytic, freq_hz)

    np.testing.assert_allclose(demod[1:], hz, rtol=1e-9)


def test_hilbert_phase_is_continuous():
    t = np.arange(1000)
    analytic = np.exp(1j * 2.5 * t)

    np.testing.assert_allclose(np.diff(utils.hilbert_phase(analytic)), 2.5, atol=1e-9)


def test_fft_slices():
    lowbin, nbins, cut_freq = utils.fft_determine_slices(2000000, 200000, 40000000, 32768)

    assert nbins == 1024
    assert cut_freq == pytest.approx(40000000 / 32)
    assert lowbin == int(round(2000000 / (40000000 / 32768))) - 256

    fdomain = np.arange(32768)
    sliced = utils.fft_do_slice(fdomain, lowbin, nbins, 32768)

    assert len(sliced) == nbins
    assert sliced[0] == lowbin
    assert sliced[-1] == 32768 - lowbin - 1


def test_genwave_frequency():
    # 4mhz at 40msps, generated from a constant rate
    rate = np.full(4000, 4.0)
    wave = utils.genwave(rate, 40 / 2)

    expected = utils.gen_wave_at_frequency(4.0, 40, 4000)
    np.testing.assert_allclose(wave, expected, atol=1e-6)


def test_todb_and_crossings():
    assert todb(np.array([1.0]))[0] == pytest.approx(0)
    assert todb(np.array([0.1]))[0] == pytest.approx(-20)
    assert todb(np.array([1.0, 10.0]), zero=True)[0] == pytest.approx(-20)

    # a falling response: 0db down to -30db
    w = np.arange(200)
    db = np.concatenate([np.linspace(0, -30, 100), np.full(100, -30)])

    crossings = print_crossings(db, w)
    assert [name for name, _ in crossings] == ["<-3db", "<-10db", "<-20db"]


def test_init_logging(tmp_path):
    logfile = tmp_path / "rfdecode.log"
    logfile.write_text("left over from an earlier run\n")
    logger = init_logging(str(logfile), stream=io.StringIO())

    try:
        logger.debug("debug line")
        logger.status("status line")

        for handler in logger.handlers:
            handler.flush()

        contents = logfile.read_text()
        assert "debug line" in contents
        assert "status line" in contents
        assert "earlier run" not in contents
        assert logger is logging.getLogger("rfdecode")
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()


def test_status_line_then_log():
    console = io.StringIO()
    logger = init_logging(columns=20, stream=console)

    try:
        logger.status("Block 1/2")
        logger.info("done")

        assert console.getvalue() == "Block 1/2".ljust(20) + "\r\ndone\n"
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()


def test_init_logging_replaces_handlers():
    logger = init_logging(stream=io.StringIO())
    first = list(logger.rfdecode_handlers)

    try:
        logger = init_logging(stream=io.StringIO())

        assert len(logger.rfdecode_handlers) == 1
        for handler in first:
            assert handler not in logger.handlers
    finally:
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()


def test_progress_line():
    line = progress_line(10, 20, 2.0, 40000000, 40000000)
    assert line == "Block 10/20: 200.0 Msamples/s (5.00x realtime)"

    assert progress_line(0, 20, 0, 40000000, 40000000) == "Block 0/20: 0.0 Msamples/s (0.00x realtime)"
