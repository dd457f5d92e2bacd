"""
Tests for the clusters dispatching chunk computations
"""

import pytest

from lidargrid.exceptions import InvalidParameterError
from lidargrid.multiproc.cluster import BasicCluster, ClusterGenerator, MpCluster


# Define a simple function with some args
def _add(a: float, b: float, factor: float = 1) -> float:
    return (a + b) * factor


# Define a function failing with a parameter error
def _fail(value: float) -> float:
    raise InvalidParameterError("value", value, "Always fails.")


class TestCluster:
    def test_cluster_generator(self) -> None:

        assert isinstance(ClusterGenerator("basic"), BasicCluster)

        with ClusterGenerator("multiprocessing", nb_workers=2) as cluster:
            assert isinstance(cluster, MpCluster)
            assert cluster.pool is not None
        # The pool is closed when exiting the context
        assert cluster.pool is None

        with pytest.raises(InvalidParameterError, match="'name'"):
            ClusterGenerator("dask")

    @pytest.mark.parametrize("name", ["basic", "multiprocessing"])  # type: ignore
    def test_launch_task(self, name: str) -> None:

        with ClusterGenerator(name, nb_workers=2) as cluster:
            futures = [cluster.launch_task(_add, args=[i, 1], kwargs={"factor": 2}) for i in range(5)]
            results = [cluster.get_res(f) for f in futures]

        assert results == [2, 4, 6, 8, 10]

    @pytest.mark.parametrize("name", ["basic", "multiprocessing"])  # type: ignore
    def test_launch_task__error(self, name: str) -> None:
        """Errors of tasks are re-raised with their parameters."""

        with ClusterGenerator(name, nb_workers=1) as cluster:
            with pytest.raises(InvalidParameterError, match="Always fails") as excinfo:
                cluster.get_res(cluster.launch_task(_fail, args=[3]))
        assert excinfo.value.value == 3

    def test_closed_cluster(self) -> None:
        cluster = ClusterGenerator("multiprocessing", nb_workers=1)
        cluster.close()
        # Closing twice has no effect
        cluster.close()
        with pytest.raises(RuntimeError, match="closed"):
            cluster.launch_task(_add, args=[1, 2])
