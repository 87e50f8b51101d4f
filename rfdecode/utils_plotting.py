# Filter response plotting, for checking filter banks by eye.  matplotlib is
# only imported when something is actually plotted.

import logging

import numpy as np

logger = logging.getLogger("rfdecode")


def todb(y, zero=False):
    db = 20 * np.log10(np.abs(y))
    if zero:
        return db - np.max(db)
    else:
        return db


def print_crossings(db, w):
    """ Log where a response crosses -3/-10/-20db, over the first half of w """
    crossings = []

    for i in range(1, len(w) // 2):
        for level in (-3, -10, -20):
            if (db[i] >= level) and (db[i - 1] < level):
                crossings.append((">%ddb" % level, w[i]))
            if (db[i] < level) and (db[i - 1] >= level):
                crossings.append(("<%ddb" % level, w[i]))

    for name, freq in crossings:
        logger.info("%s crossing at %.4f", name, freq)

    return crossings


def bank_frequencies(bank):
    """ Frequency (in mhz) of each bin of a FilterBank """
    return np.arange(bank.blocklen) * (bank.freq_hz / 1000000 / bank.blocklen)


def plot_filterbank(bank, names, figure=None, zero_base=False, show=True):
    """ Plot magnitude (and phase) of the named filters in bank, up to Nyquist. """
    import matplotlib.pyplot as plt

    if isinstance(names, str):
        names = [names]

    w = bank_frequencies(bank)
    keep = bank.blocklen // 2

    fig = figure if figure is not None else plt.figure()
    ax1 = fig.add_subplot(111)
    ax1.set_title("Filter bank frequency response")

    ax2 = ax1.twinx()

    for name in names:
        h = bank[name]
        with np.errstate(divide="ignore"):
            db = todb(h, zero_base)

        logger.info("%s:", name)
        print_crossings(db, w)

        ax1.plot(w[1:keep], db[1:keep], label=name)
        ax2.plot(w[1:keep], np.unwrap(np.angle(h[1:keep])), linestyle=":")

    ax1.set_ylabel("Amplitude [dB]")
    ax1.set_xlabel("Frequency [mhz]")
    ax2.set_ylabel("Angle (radians)")
    ax1.legend()
    ax1.grid()

    if show:
        plt.show()

    return fig
