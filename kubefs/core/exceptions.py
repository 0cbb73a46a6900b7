class FetchError(Exception):
    """
    An exception raised when a listing could not be fetched from the cluster.
    """

    pass


class FetchConnectionError(FetchError):
    """
    An exception raised when the cluster API can not be reached or rejects our credentials.
    """

    pass


class FetchAuthenticationError(FetchConnectionError):
    """
    An exception raised when the cluster API refuses the configured credentials.
    """

    pass


class NamespaceNotFound(FetchError):
    """
    An exception raised when the namespace to list pods from does not exist.
    """

    pass


class RemoteFetchError(FetchError):
    """
    An exception raised when the cluster API answered with any other error.
    """

    pass


class ResourceNotFound(KeyError):
    """
    An exception raised when an inode is not known to the tree store.
    """

    pass
