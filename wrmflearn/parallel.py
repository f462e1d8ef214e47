"""
Worker pool for the per-entity loop of an ALS pass and the scoped
BLAS thread limit that goes with it.

Each entity (user or item) is solved independently from the fixed side,
so the pass is split over a thread pool sharing the factor buffers.
BLAS is pinned to one thread meanwhile to avoid oversubscription.
"""
import logging
import numbers
from contextlib import contextmanager
from multiprocessing.pool import ThreadPool
from threadpoolctl import threadpool_limits

from wrmflearn.exceptions import ConfigurationError

LOGGER = logging.getLogger(__name__)

@contextmanager
def blas_single_threaded():
    LOGGER.debug("setting BLAS threads to 1 (to avoid thread contention)")
    limiter = threadpool_limits(limits=1, user_api="blas")
    try:
        yield
    finally:
        limiter.restore_original_limits()
        LOGGER.debug("BLAS threads restored")

class WorkerPool(object):
    """
    Parameters
    ==========
    n_threads : int
        number of worker threads. With 1 the work is run inline.
    """

    def __init__(self,n_threads=1):
        if not isinstance(n_threads,numbers.Integral) or n_threads<1:
            raise ConfigurationError("n_threads should be a positive integer, got %r" % (n_threads,))
        self.n_threads = int(n_threads)
        self.pool = None

    def __enter__(self):
        if self.n_threads>1:
            self.pool = ThreadPool(self.n_threads)
        return self

    def __exit__(self,*exc):
        if self.pool is not None:
            self.pool.terminate()
            self.pool.join()
            self.pool = None
        return False

    def map(self,func,n):
        """
        Apply func to 0..n-1 and return the results in order.
        Exceptions raised by func are re-raised here.
        """
        if self.pool is None:
            return [func(j) for j in range(n)]
        chunksize = max(1,n//(4*self.n_threads))
        return self.pool.map(func,range(n),chunksize)
