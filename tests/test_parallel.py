import pytest
from threadpoolctl import threadpool_info

from wrmflearn.exceptions import ConfigurationError
from wrmflearn.parallel import WorkerPool, blas_single_threaded


def blas_threads():
    return [m["num_threads"] for m in threadpool_info() if m["user_api"] == "blas"]


@pytest.mark.parametrize("n_threads", [1, 3])
def test_map_keeps_order(n_threads):
    with WorkerPool(n_threads) as pool:
        assert pool.map(lambda j: j * j, 10) == [j * j for j in range(10)]


def test_worker_exception_propagates():
    def fail(j):
        if j == 5:
            raise ArithmeticError("entity %d" % j)
        return j

    with WorkerPool(2) as pool:
        with pytest.raises(ArithmeticError):
            pool.map(fail, 8)


@pytest.mark.parametrize("n_threads", [0, -2, 1.5, "4"])
def test_invalid_pool_size(n_threads):
    with pytest.raises(ConfigurationError):
        WorkerPool(n_threads)


def test_blas_threads_are_pinned_and_restored():
    before = blas_threads()
    with blas_single_threaded():
        assert all(n == 1 for n in blas_threads())
    assert blas_threads() == before


def test_blas_threads_are_restored_on_error():
    before = blas_threads()
    with pytest.raises(RuntimeError):
        with blas_single_threaded():
            raise RuntimeError("boom")
    assert blas_threads() == before
