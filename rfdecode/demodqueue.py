import logging
import threading
import time
from queue import Queue

from .errors import BlockSizeMismatch

logger = logging.getLogger("rfdecode")


class DemodQueue:
    """ Demodulates blocks on a pool of worker threads.

    Blocks are numbered in submission order and results come back out of get()
    in that same order, no matter which worker finishes first.  Phase stitching
    is done as each result is released, so the phase stays continuous.

    The filter bank in use when a block is submitted is the one it is
    demodulated with, even if rf.computefilters() runs before a worker gets to it.
    The bank also carries the MTF settings and rot delay that go with it.
    """

    def __init__(self, rf, num_worker_threads=4):
        self.ended = False
        self.rf = rf

        self.lock = threading.Lock()
        self.results_ready = threading.Condition(self.lock)
        self.results = {}

        self.q_in = Queue()
        self.q_out = Queue()

        self.threads = []

        # next block number to hand out, and to return
        self.request = 0
        self.nextout = 0

        self.blocksrun = 0
        self.blockstime = 0

        self.num_worker_threads = max(num_worker_threads, 1)

        self.dequeue_thread = threading.Thread(target=self.dequeue, daemon=True)

        for i in range(self.num_worker_threads):
            t = threading.Thread(target=self.worker, daemon=True, args=())
            t.start()
            self.threads.append(t)

        self.dequeue_thread.start()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.end()

    def end(self):
        if not self.ended:
            # stop workers
            for i in self.threads:
                self.q_in.put(None)

            for t in self.threads:
                t.join()

            self.q_out.put(None)
            self.dequeue_thread.join()

            if self.blocksrun:
                logger.debug(
                    "Demodulated %d blocks, %.3f sec/block", self.blocksrun, self.blockstime / self.blocksrun
                )

            self.ended = True

    def __del__(self):
        self.end()

    def pending(self):
        return self.request - self.nextout

    def submit(self, block, mtf_level=0):
        """ Queue a block for demodulation.  Returns its block number. """
        if self.ended:
            raise RuntimeError("DemodQueue has been ended")

        if len(block) != self.rf.blocklen:
            raise BlockSizeMismatch("block has %d samples, expected %d" % (len(block), self.rf.blocklen))

        with self.lock:
            blocknum = self.request
            self.request += 1

        self.q_in.put(("DEMOD", blocknum, block, mtf_level, self.rf.Filters))

        return blocknum

    def worker(self):
        rf = self.rf

        while True:
            item = self.q_in.get()

            if item is None:
                return

            blocknum, block, mtf_level, filters = item[1:]

            st = time.time()
            try:
                output = rf.demodblock(data=block, mtf_level=mtf_level, cut=True, filters=filters)
            except Exception as e:
                # handed back to whoever collects this block
                output = e

            with self.lock:
                self.blockstime += time.time() - st
                self.blocksrun += 1

            self.q_out.put((blocknum, output))

    def dequeue(self):
        # This is the thread's main loop - run until killed.
        while True:
            rv = self.q_out.get()
            if rv is None:
                return

            blocknum, item = rv

            with self.results_ready:
                self.results[blocknum] = item
                self.results_ready.notify_all()

    def get(self, timeout=None):
        """ Return the next block's demodulated output (in submission order).

        Exceptions raised while demodulating that block are re-raised here.
        """
        with self.results_ready:
            if self.nextout >= self.request:
                raise ValueError("No blocks have been submitted that are not already returned")

            blocknum = self.nextout
            if not self.results_ready.wait_for(lambda: blocknum in self.results, timeout):
                raise TimeoutError("Timed out waiting for block %d" % blocknum)

            item = self.results.pop(blocknum)
            self.nextout += 1

        if isinstance(item, Exception):
            # the phase can't continue across a missing block
            self.rf.unwrapper.reset()
            raise item

        item["phase"] = self.rf.unwrapper.stitch(item["phase"])
        item["blocknum"] = blocknum

        return item

    def run(self, blocks, mtf_level=0):
        """ Demodulate an iterable of blocks, yielding the outputs in order """
        max_inflight = self.num_worker_threads * 2

        for block in blocks:
            self.submit(block, mtf_level)

            while self.pending() >= max_inflight:
                yield self.get()

        while self.pending():
            yield self.get()
