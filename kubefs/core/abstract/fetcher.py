import abc


class BaseResourceFetcher(abc.ABC):
    """
    The boundary to the cluster: the only two listings the filesystem needs.

    Both calls are blocking and perform a full remote query every time, caching is the tree store's job.
    On failure they raise a `kubefs.core.exceptions.FetchError` subclass.
    An implementation built on an asynchronous client must block until the result is available,
    the callers never deal with event loops.
    """

    @abc.abstractmethod
    def list_namespaces(self) -> list[str]:
        pass

    @abc.abstractmethod
    def list_pods(self, namespace: str) -> list[str]:
        pass
