# Copyright (c) 2026 LidarGrid developers
#
# This file is part of the LidarGrid project.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
#
# You may obtain a copy of the License at
#
# http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.


"""Clusters running the chunk tasks of tiled rasterizations, sequentially or on a pool of worker processes."""

import logging
import multiprocessing
from multiprocessing.pool import Pool
from typing import Any, Callable, Dict, List, Optional

from lidargrid._config import config
from lidargrid.exceptions import InvalidParameterError

_cluster_names = ("basic", "multiprocessing")


class ClusterGenerator:
    def __new__(cls, name: str = "basic", nb_workers: Optional[int] = None) -> "AbstractCluster":  # type: ignore
        """
        Create a cluster from its name.

        :param name: "basic" to run chunk tasks one after the other in the calling process, or "multiprocessing" to
            run them on a pool of worker processes.
        :param nb_workers: Number of worker processes, ignored for "basic". Defaults to the global configuration.
        """
        if name not in _cluster_names:
            raise InvalidParameterError("name", name, f"Cluster name must be one of {list(_cluster_names)}.")

        if name == "basic":
            return BasicCluster()
        return MpCluster(nb_workers=config["nb_workers"] if nb_workers is None else nb_workers)


class AbstractCluster:
    """
    Interface of clusters: tasks are launched with :meth:`launch_task` and their result collected with
    :meth:`get_res`, which re-raises any error of the task. Clusters are context managers closing on exit.
    """

    nb_workers: int = 1

    def __init__(self) -> None:
        self.pool: Optional[Pool] = None

    def __enter__(self) -> "AbstractCluster":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(nb_workers={self.nb_workers})"

    def close(self) -> None:
        """Release the workers of the cluster."""
        raise NotImplementedError("This method should be implemented by subclasses.")

    def launch_task(
        self, fun: Callable[..., Any], args: Optional[List[Any]] = None, kwargs: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Launch a task.

        :param fun: Function of the task. It must be picklable for clusters with worker processes.
        :param args: Positional arguments of the function.
        :param kwargs: Keyword arguments of the function.

        :return: Handle to pass to :meth:`get_res`.
        """
        raise NotImplementedError("This method should be implemented by subclasses.")

    def get_res(self, future: Any) -> Any:
        """Result of a launched task, from the handle returned by :meth:`launch_task`."""
        return future


class BasicCluster(AbstractCluster):
    """Sequential cluster: tasks run at launch, and the handle is the result itself."""

    def close(self) -> None:
        pass

    def launch_task(
        self, fun: Callable[..., Any], args: Optional[List[Any]] = None, kwargs: Optional[Dict[str, Any]] = None
    ) -> Any:
        return fun(*(args or []), **(kwargs or {}))


class MpCluster(AbstractCluster):
    """Cluster of worker processes forked from the calling process."""

    def __init__(self, nb_workers: int = 1, timeout: float = 5000) -> None:
        """
        :param nb_workers: Number of worker processes.
        :param timeout: Maximum time to wait for the result of a task, in seconds.
        """
        super().__init__()
        if isinstance(nb_workers, bool) or int(nb_workers) != nb_workers or nb_workers < 1:
            raise InvalidParameterError("nb_workers", nb_workers, "Must be an integer of at least 1.")
        self.nb_workers = int(nb_workers)
        self.timeout = timeout

        # Workers are renewed every 10 chunk tasks
        self.pool = multiprocessing.get_context("fork").Pool(processes=self.nb_workers, maxtasksperchild=10)
        logging.debug("Started a pool of %d worker processes.", self.nb_workers)

    def close(self) -> None:
        """Terminate the worker processes. Closing twice has no effect."""
        if self.pool is None:
            return
        self.pool.terminate()
        self.pool.join()
        self.pool = None
        logging.debug("Closed the pool of %d worker processes.", self.nb_workers)

    def launch_task(
        self, fun: Callable[..., Any], args: Optional[List[Any]] = None, kwargs: Optional[Dict[str, Any]] = None
    ) -> Any:
        """
        Send a task to the pool.

        :raises RuntimeError: If the cluster was closed.

        :return: Asynchronous result of the task.
        """
        if self.pool is None:
            raise RuntimeError("Cannot launch a task on a closed cluster.")
        return self.pool.apply_async(fun, args=args or [], kwds=kwargs or {})

    def get_res(self, future: Any) -> Any:
        """Wait for the result of a task, re-raising in the calling process any error raised by the worker."""
        return future.get(timeout=self.timeout)
