#!/usr/bin/env python3
"""Benchmark harness for the RFDecode demodulation pipeline.

Creates a synthetic RF signal (using the same approach as computedelays)
and times demodblock, both directly and through a DemodQueue worker pool.

Usage:
    python3 tools/bench_rf.py [--blocks N] [--system NTSC|PAL] [--audio] [--efm] [--threads N]
"""

import argparse
import logging
import time

import numpy as np
import numpy.fft as npfft

from rfdecode.core import RFDecode
from rfdecode.demodqueue import DemodQueue
from rfdecode.utils import genwave, iter_blocks
from rfdecode.utils_logging import init_logging, progress_line

logger = logging.getLogger("rfdecode")


def make_fake_signal(rf, length=None):
    """Generate a synthetic RF signal, similar to computedelays().

    Returns an array (blocklen samples by default) of lines with sync, burst
    and a black to white ramp, FM modulated the way a disc is.
    """
    length = rf.blocklen if length is None else length

    SP = rf.SysParams

    fakeoutput = np.zeros(length, dtype=np.double)
    fakeoutput[:] = rf.iretohz(0)  # black level

    synclen_full = int(4.7 * rf.freq)
    line_period_samples = int(SP.line_period * rf.freq)

    pos = 500
    while pos + line_period_samples < length - 500:
        # Sync pulse
        fakeoutput[pos : pos + synclen_full] = rf.iretohz(SP.vsync_ire)

        # Back porch + color burst
        porch_start = pos + synclen_full + int(0.6 * rf.freq)
        burst_end = porch_start + int(2.4 * rf.freq)
        rate = np.full(burst_end - porch_start, SP.fsc_mhz, dtype=np.double)
        fakeoutput[porch_start:burst_end] += genwave(rate, rf.freq / 2) * SP.hz_ire * 20

        # Active video area: ramp from black to white
        active_start = pos + int(9.5 * rf.freq)
        active_end = pos + line_period_samples
        ramp = np.linspace(0, 100, active_end - active_start)
        fakeoutput[active_start:active_end] = rf.iretohz(0) + ramp * SP.hz_ire

        pos += line_period_samples

    # Apply pre-emphasis, block by block is close enough here
    fakeoutput_emp = np.zeros_like(fakeoutput)
    for start in range(0, length, rf.blocklen):
        chunk = fakeoutput[start : start + rf.blocklen]
        if len(chunk) < rf.blocklen:
            chunk = np.concatenate([chunk, np.full(rf.blocklen - len(chunk), rf.iretohz(0))])

        emp = npfft.ifft(npfft.fft(chunk) * rf.Filters["Fvideo_lpf"] * rf.Filters["Femp"]).real
        fakeoutput_emp[start : start + rf.blocklen] = emp[: len(fakeoutput_emp[start : start + rf.blocklen])]

    fakesignal = genwave(fakeoutput_emp, rf.freq_hz / 2)
    fakesignal *= 4096
    fakesignal += 8192

    return fakesignal


def report(label, rf, times):
    times = np.array(times)
    mean = times.mean()

    print(f"\n=== {label} ===")
    print(f"  Blocks:    {len(times)}")
    print(f"  Block len: {rf.blocklen} samples ({rf.blocklen / rf.freq_hz * 1000:.1f} ms of signal)")
    print(f"  Total:     {times.sum():.3f}s")
    print(f"  Mean:      {mean*1000:.2f} ms/block")
    print(f"  Median:    {np.median(times)*1000:.2f} ms/block")
    print(f"  Std:       {times.std()*1000:.2f} ms")
    print(f"  Min:       {times.min()*1000:.2f} ms")
    print(f"  Max:       {times.max()*1000:.2f} ms")

    usable = rf.blocklen - rf.blockcut - rf.blockcut_end
    samples_per_sec = usable / mean
    fields_per_sec = samples_per_sec / (rf.linelen * rf.SysParams.field_lines[0])
    print(f"  Throughput: {samples_per_sec/1e6:.1f} Msamples/s ({fields_per_sec:.1f} fields/s)")


def bench_demodblock(rf, signal, n_blocks, label):
    """Time demodblock on the same block n_blocks times."""

    # Warmup (includes JIT compilation for numba functions)
    rv = rf.demodblock(data=signal, mtf_level=0, cut=True)

    times = []
    for i in range(n_blocks):
        st = time.perf_counter()
        rv = rf.demodblock(data=signal, mtf_level=0, cut=True)
        times.append(time.perf_counter() - st)

    report(label, rf, times)

    return rv


def bench_queue(rf, n_blocks, threads):
    """Time a stream of overlapping blocks through a DemodQueue."""
    hop = rf.blocklen - rf.blockcut - rf.blockcut_end
    signal = make_fake_signal(rf, rf.blocklen + (hop * (n_blocks - 1)))

    rf.unwrapper.reset()

    with DemodQueue(rf, num_worker_threads=threads) as queue:
        st = time.perf_counter()
        count = 0
        for _ in queue.run(iter_blocks(signal, rf)):
            count += 1
            logger.status(progress_line(count, n_blocks, time.perf_counter() - st, hop, rf.freq_hz))
        elapsed = time.perf_counter() - st

    report(f"DemodQueue ({threads} threads)", rf, [elapsed / count] * count)


def main():
    parser = argparse.ArgumentParser(description="Benchmark RFDecode demodulation pipeline")
    parser.add_argument("--blocks", type=int, default=100, help="Number of blocks to benchmark (default: 100)")
    parser.add_argument("--system", choices=["NTSC", "PAL"], default="NTSC", help="Video system (default: NTSC)")
    parser.add_argument("--audio", action="store_true", help="Enable analog audio decoding")
    parser.add_argument("--efm", action="store_true", help="Enable EFM/digital audio decoding")
    parser.add_argument("--freq", type=float, default=40, help="Input frequency in MHz (default: 40)")
    parser.add_argument("--blocklen", type=int, default=32768, help="FFT block length (default: 32768)")
    parser.add_argument("--threads", type=int, default=0, help="Also benchmark a DemodQueue with this many threads")
    parser.add_argument("--log", default=None, help="Write a debug log to this file")
    args = parser.parse_args()

    init_logging(args.log)
    if args.log:
        logger.info("Logging to %s", args.log)

    print(f"Initializing RFDecode (system={args.system}, freq={args.freq}MHz, "
          f"audio={'on' if args.audio else 'off'}, efm={'on' if args.efm else 'off'})...")

    rf = RFDecode(
        inputfreq=args.freq,
        system=args.system,
        blocklen=args.blocklen,
        decode_digital_audio=args.efm,
        decode_analog_audio=44100 if args.audio else 0,
    )

    print(f"Block length: {rf.blocklen} samples ({rf.blocklen / rf.freq_hz * 1000:.1f} ms)")
    print(f"Block cut: {rf.blockcut} front, {rf.blockcut_end} end")
    print(f"Filter settle lengths: {rf.Filters.settle}")
    print(f"Line length: {rf.linelen} samples")

    print("\nGenerating synthetic RF signal...")
    signal = make_fake_signal(rf)
    print(f"Signal: {len(signal)} samples, range [{signal.min():.0f}, {signal.max():.0f}]")

    bench_demodblock(rf, signal, args.blocks, f"demodblock ({args.system})")

    if args.threads:
        bench_queue(rf, args.blocks, args.threads)


if __name__ == "__main__":
    main()
