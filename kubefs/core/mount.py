import logging

import llfuse

from kubefs.core.abstract.fetcher import BaseResourceFetcher
from kubefs.core.filesystem import KubeFS
from kubefs.core.models.config import settings
from kubefs.core.tree import TreeStore

logger = logging.getLogger("kubefs")


def build_filesystem(fetcher: BaseResourceFetcher) -> KubeFS:
    """Load the namespaces and build the llfuse operations on top of them.

    Raises `FetchError` if the namespaces can not be listed.
    """

    store = TreeStore(fetcher, uid=settings.uid, gid=settings.gid)
    store.initialize()
    return KubeFS(
        store,
        attr_timeout=settings.attr_timeout,
        entry_timeout=settings.entry_timeout,
        release_lock_on_fetch=settings.max_workers > 1,
    )


def mount(operations: KubeFS, mountpoint: str) -> None:
    """Serve `operations` on `mountpoint` until the filesystem is unmounted."""

    options = set(llfuse.default_options) | settings.mount_options
    if settings.debug_fuse:
        options.add("debug")

    logger.info(f"Mounting {settings.fsname} on {mountpoint}")
    logger.debug(f"Mount options: {sorted(options)}")

    llfuse.init(operations, mountpoint, options)
    try:
        llfuse.main(workers=settings.max_workers)
    except BaseException:
        llfuse.close(unmount=False)
        raise
    llfuse.close()

    logger.info(f"Unmounted {mountpoint}")
