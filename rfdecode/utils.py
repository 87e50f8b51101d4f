# A collection of DSP helper functions used by the RF decoder

import math

from numba import njit

# standard numeric/scientific libraries
import numpy as np
import numpy.fft as npfft
import scipy.signal as sps

# Essential (or at least useful) standalone routines and lambdas

pi = np.pi
tau = np.pi * 2

# https://stackoverflow.com/questions/20924085/python-conversion-between-coordinates
polar2z = lambda r, θ: r * np.exp(1j * θ)

# Fraction of a filter's impulse energy allowed to leak past either edge of a block
SETTLE_THRESHOLD = 1e-4


@njit(cache=True, nogil=True)
def nb_round(m):
    return int(np.round(m))


def emphasis_iir(t1, t2, fs):
    """Generate an IIR filter for 6dB/octave pre-emphasis (t1 > t2) or
    de-emphasis (t1 < t2), given time constants for the two corners."""

    # Convert time constants to frequencies, and pre-warp for bilinear transform
    w1 = 2 * fs * np.tan((1 / t1) / (2 * fs))
    w2 = 2 * fs * np.tan((1 / t2) / (2 * fs))

    # Zero at t1, pole at t2
    tf_b, tf_a = sps.zpk2tf([-w1], [-w2], w2 / w1)
    rv = sps.bilinear(tf_b, tf_a, fs)

    return rv


# This converts a regular B, A filter to an FFT of our selected block length
def filtfft(filt, blocklen):
    return sps.freqz(filt[0], filt[1], blocklen, whole=1)[1]


# Same, for second-order sections (better behaved for high order/low cutoff filters)
def filtfft_sos(sos, blocklen):
    return sps.sosfreqz(sos, blocklen, whole=True)[1]


def sqsum(cmplx):
    return np.sqrt((cmplx.real ** 2) + (cmplx.imag ** 2))


def _impulse_energy(filt):
    impulse = np.abs(npfft.ifft(filt)) ** 2
    total = np.sum(impulse)

    return impulse, total


def settle_length(filt, threshold=SETTLE_THRESHOLD):
    """ Number of samples at the start of an overlap-save block that a frequency-domain
    filter leaves invalid, i.e. where wrapped-around impulse energy is still above threshold.
    """
    impulse, total = _impulse_energy(filt)
    if total == 0:
        return 0

    causal = impulse[: len(impulse) // 2]

    # remaining[i] is the fraction of energy at or after sample i
    remaining = np.cumsum(causal[::-1])[::-1] / total
    below = np.nonzero(remaining < threshold)[0]

    return int(below[0]) if len(below) else len(causal)


def settle_length_end(filt, threshold=SETTLE_THRESHOLD):
    """ Number of samples at the end of a block left invalid by the anticausal part of
    a filter's response (which wraps around from the start of the block).
    """
    impulse, total = _impulse_energy(filt)
    if total == 0:
        return 0

    # anticausal[a - 1] is the energy a samples ahead of t=0
    anticausal = impulse[::-1][: len(impulse) // 2]

    remaining = np.cumsum(anticausal[::-1])[::-1] / total
    above = np.nonzero(remaining >= threshold)[0]

    return int(above[-1]) + 1 if len(above) else 0


def edge_lengths(filt, threshold=SETTLE_THRESHOLD):
    """ (head, tail) invalid lengths of a block filtered by filt """
    return settle_length(filt, threshold), settle_length_end(filt, threshold)


def fit_delay(filt, head_room, tail_room):
    """ Find the whole-sample delay that puts the most of filt's impulse energy inside
    a window reaching head_room samples behind and tail_room samples ahead of t=0.
    """
    impulse, total = _impulse_energy(filt)
    if total == 0:
        return 0

    blocklen = len(impulse)
    window = head_room + tail_room

    csum = np.concatenate([[0], np.cumsum(np.concatenate([impulse, impulse]))])

    delays = np.arange(head_room)
    starts = (blocklen - tail_room - delays) % blocklen
    inside = csum[starts + window] - csum[starts]

    return int(delays[np.argmax(inside)])


def delay_filter(filt, delay):
    """ Apply a linear phase shift to delay filt's output by a whole number of samples """
    k = np.arange(len(filt))
    return filt * np.exp(-1j * tau * k * delay / len(filt))


@njit(cache=True,nogil=True)
def calczc_findfirst(data, target, rising):
    if rising:
        for i in range(0, len(data)):
            if data[i] >= target:
                return i

        return None
    else:
        for i in range(0, len(data)):
            if data[i] <= target:
                return i

        return None


@njit(cache=True,nogil=True)
def calczc_do(data, _start_offset, target, edge=0, count=10):
    start_offset = max(1, int(_start_offset))
    icount = int(count + 1)

    if edge == 0:  # capture rising or falling edge
        if data[start_offset] < target:
            edge = 1
        else:
            edge = -1

    loc = calczc_findfirst(
        data[start_offset : start_offset + icount], target, edge == 1
    )

    if loc is None:
        return None

    x = start_offset + loc
    a = data[x - 1] - target
    b = data[x] - target

    if b - a != 0:
        y = -a / (-a + b)
    else:
        y = 0

    return x - 1 + y


def calczc(data, _start_offset, target, edge=0, count=10):
    """ Find the (interpolated) location where data crosses target.

    edge:  -1 falling, 0 either, 1 rising
    """
    return calczc_do(data, _start_offset, target, edge, count)


# Shamelessly based on https://github.com/scipy/scipy/blob/v1.6.0/scipy/signal/signaltools.py#L2264-2267
# ... and intended for real FFT, but seems fine with complex as well ;)
def build_hilbert(fft_size):
    if (fft_size // 2) - (fft_size / 2) != 0:
        raise ValueError("build_hilbert: must have even fft_size")

    output = np.zeros(fft_size)
    output[0] = output[fft_size // 2] = 1
    output[1 : fft_size // 2] = 2

    return output


@njit(cache=True,nogil=True)
def unwrap_hilbert_getangles(hilbert):
    tangles = np.angle(hilbert)
    dangles = np.ediff1d(tangles, to_begin=0).real

    # make sure unwapping goes the right way
    if dangles[0] < -pi:
        dangles[0] += tau

    return dangles


@njit(cache=True,nogil=True)
def unwrap_hilbert_fixangles(tdangles2, freq_hz):
    # With extremely bad data, the unwrapped angles can jump.
    while np.min(tdangles2) < 0:
        tdangles2[tdangles2 < 0] += tau
    while np.max(tdangles2) > tau:
        tdangles2[tdangles2 > tau] -= tau

    return tdangles2 * (freq_hz / tau)


def unwrap_hilbert(hilbert, freq_hz):
    """ FM demodulate an analytic signal, returning instantaneous frequency in Hz """
    dangles = unwrap_hilbert_getangles(hilbert)

    # This can't be run with numba
    tdangles2 = np.unwrap(dangles)

    return unwrap_hilbert_fixangles(tdangles2, freq_hz)


def hilbert_phase(hilbert):
    """ Continuous (unwrapped) carrier phase of an analytic signal, in radians """
    return np.unwrap(np.angle(hilbert))


def fft_determine_slices(center, min_bandwidth, freq_hz, bins_in):
    """ returns the # of sub-bins needed to get center+/-min_bandwidth.
        The returned lowbin is the first bin (symmetrically) needed to be saved.

        This will need to be 'flipped' using fft_do_slice to get the trimmed set
    """

    # compute the width of each bin
    binwidth = freq_hz / bins_in

    cbin = nb_round(center / binwidth)

    # compute the needed number of fft bins...
    bbins = nb_round(min_bandwidth / binwidth)
    # ... and round that up to the next power of two
    nbins = 2 * (2 ** math.ceil(math.log2(bbins * 2)))

    lowbin = cbin - (nbins // 4)

    cut_freq = binwidth * nbins

    return lowbin, nbins, cut_freq


def fft_do_slice(fdomain, lowbin, nbins, blocklen):
    """ Uses lowbin and nbins as returned from fft_determine_slices to
        cut the fft """
    nbins_half = nbins // 2
    return np.concatenate(
        [
            fdomain[lowbin : lowbin + nbins_half],
            fdomain[blocklen - lowbin - nbins_half : blocklen - lowbin],
        ]
    )


@njit(cache=True)
def genwave(rate, freq, initialphase=0):
    """ Generate an FM waveform from target frequency data """
    out = np.zeros(len(rate), dtype=np.double)

    angle = initialphase

    for i in range(0, len(rate)):
        out[i] = np.sin(angle)

        angle += np.pi * (rate[i] / freq)
        if angle > np.pi:
            angle -= tau

    return out


def gen_wave_at_frequency(frequency, sample_frequency, num_samples, gen_func=np.sin):
    """Generate a sine wave with the specified parameters."""
    samples = np.arange(num_samples)
    wave_scale = frequency / sample_frequency
    return gen_func(2 * np.pi * wave_scale * samples)


class StridedCollector:
    # This keeps a numpy buffer and outputs an fft block and keeps the overlap
    # for the next fft.
    def __init__(self, blocklen=32768, cut_begin=2048, cut_end=0):
        self.buffer = None
        self.blocklen = blocklen

        self.stride = cut_begin + cut_end

    def add(self, data):
        if self.buffer is None:
            self.buffer = data
        else:
            self.buffer = np.concatenate([self.buffer, data])

        return self.have_block()

    def have_block(self):
        return (self.buffer is not None) and (len(self.buffer) >= self.blocklen)

    def get_block(self):
        if self.have_block():
            rv = self.buffer[0 : self.blocklen]
            self.buffer = self.buffer[self.blocklen - self.stride :]

            return rv

        return None


def iter_blocks(data, rf):
    """ Slice a sample stream into overlapping blocks for rf (an RFDecode).

    Consecutive blocks overlap by blockcut + blockcut_end samples, so the cut
    outputs of each block follow on from the previous one.  A trailing partial
    block is not returned.
    """
    collector = StridedCollector(rf.blocklen, rf.blockcut, rf.blockcut_end)
    collector.add(np.asarray(data))

    while collector.have_block():
        yield collector.get_block()
