""" Logging setup for the decoder and its tools.

Everything logs to the "rfdecode" logger.  init_logging() gives it a console
handler that shares its stream with a carriage-return status line, plus an
optional DEBUG logfile.
"""

import logging
import os
import sys

LOGGER_NAME = "rfdecode"

LOGFILE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class StatusLineHandler(logging.StreamHandler):
    """ Console handler that moves past an unfinished status line before logging """

    def __init__(self, stream=None, columns=80):
        super().__init__(stream if stream is not None else sys.stderr)
        self.columns = columns
        self.status_written = False

    def status(self, line):
        self.acquire()
        try:
            self.stream.write(line.ljust(self.columns) + "\r")
            self.flush()
            self.status_written = True
        finally:
            self.release()

    def emit(self, record):
        if self.status_written:
            self.stream.write("\n")
            self.status_written = False

        super().emit(record)


def init_logging(outfile_name=None, columns=80, level=logging.INFO, stream=None):
    """ Set up the rfdecode logger and return it.

    outfile_name -- DEBUG logfile (replaced if it exists), or None for none
    columns      -- width status lines are padded to
    level        -- console log level
    stream       -- console stream (default stderr)

    The returned logger also has a status(line) method, which overwrites the
    current console line and logs line at DEBUG.  Calling init_logging again
    replaces the handlers a previous call installed.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    for handler in getattr(logger, "rfdecode_handlers", []):
        logger.removeHandler(handler)
        handler.close()

    console = StatusLineHandler(stream, columns)
    console.setLevel(level)
    handlers = [console]

    if outfile_name is not None:
        if os.path.exists(outfile_name):
            os.unlink(outfile_name)

        logfile = logging.FileHandler(outfile_name)
        logfile.setLevel(logging.DEBUG)
        logfile.setFormatter(logging.Formatter(LOGFILE_FORMAT))
        handlers.append(logfile)

    for handler in handlers:
        logger.addHandler(handler)

    logger.rfdecode_handlers = handlers

    def status(line):
        console.status(line)
        logger.debug(line)

    logger.status = status

    return logger


def progress_line(blocks_done, blocks_total, elapsed, samples_per_block, freq_hz):
    """ One status line for a run of demodulated blocks """
    if elapsed > 0:
        rate = blocks_done * samples_per_block / elapsed
        speed = rate / freq_hz
    else:
        rate = speed = 0

    return "Block %d/%d: %.1f Msamples/s (%.2fx realtime)" % (blocks_done, blocks_total, rate / 1e6, speed)
