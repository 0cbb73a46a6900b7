import threading
from collections import Counter
from typing import Optional

import pytest

from kubefs.core.abstract.fetcher import BaseResourceFetcher
from kubefs.core.exceptions import FetchError
from kubefs.core.tree import TreeStore

TEST_NAMESPACES = ["default", "kube-system"]
TEST_PODS = {
    "default": ["web-1"],
    "kube-system": ["coredns-1", "etcd-control-plane"],
}


class FakeFetcher(BaseResourceFetcher):
    """Serves fixed listings and counts how many times each one was requested."""

    def __init__(
        self,
        namespaces: Optional[list[str]] = None,
        pods: Optional[dict[str, list[str]]] = None,
    ) -> None:
        self.namespaces = list(TEST_NAMESPACES if namespaces is None else namespaces)
        self.pods = dict(TEST_PODS if pods is None else pods)
        self.calls: Counter[str] = Counter()
        self.failures: dict[str, FetchError] = {}
        # Set as soon as list_pods is called
        self.entered = threading.Event()
        # When set, list_pods waits on it before answering
        self.gate: Optional[threading.Event] = None

    def list_namespaces(self) -> list[str]:
        self.calls["namespaces"] += 1
        if "namespaces" in self.failures:
            raise self.failures["namespaces"]
        return list(self.namespaces)

    def list_pods(self, namespace: str) -> list[str]:
        self.calls[namespace] += 1
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=5)
        if namespace in self.failures:
            raise self.failures[namespace]
        return list(self.pods.get(namespace, []))


class WatchedLock:
    """A lock that counts the threads which asked for it, whether they got it yet or not."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._condition = threading.Condition()
        self.requests = 0

    def __enter__(self) -> "WatchedLock":
        with self._condition:
            self.requests += 1
            self._condition.notify_all()
        self._lock.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self._lock.release()

    def wait_for_requests(self, count: int, timeout: float = 5) -> bool:
        with self._condition:
            return self._condition.wait_for(lambda: self.requests >= count, timeout=timeout)


def watch_population(store: TreeStore, inode: int) -> WatchedLock:
    lock = WatchedLock()
    store._population_locks[inode] = lock  # type: ignore
    return lock


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def store(fetcher: FakeFetcher) -> TreeStore:
    store = TreeStore(fetcher, uid=1000, gid=1000)
    store.initialize()
    return store
