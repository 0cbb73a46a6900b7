from __future__ import annotations

import contextlib
import errno
import logging
import os
import stat
from typing import Any, ContextManager, Iterator, Optional

import llfuse

from kubefs.core.exceptions import FetchError, ResourceNotFound
from kubefs.core.models.objects import EntryType, ResourceAttributes
from kubefs.core.tree import TreeStore

logger = logging.getLogger("kubefs")

# Reads never return more than this, whatever the kernel asks for
MAX_READ_SIZE = 128 * 1024

BLOCK_SIZE = 512
NAME_MAX = 255


class KubeFS(llfuse.Operations):  # type: ignore
    """
    The llfuse operations of the filesystem: a translation of FUSE requests into `TreeStore` calls.

    Nothing is kept between requests. File and directory handles are the inodes themselves, so
    open/opendir/release/releasedir have nothing to do. The filesystem is read-only, every request
    that would change anything fails with ENOTSUP.
    """

    def __init__(
        self,
        store: TreeStore,
        attr_timeout: float = 1.0,
        entry_timeout: float = 1.0,
        release_lock_on_fetch: bool = False,
    ) -> None:
        super().__init__()
        self.store = store
        self.attr_timeout = attr_timeout
        self.entry_timeout = entry_timeout
        # NOTE: only valid when called from llfuse's worker threads, which hold the global lock
        self.release_lock_on_fetch = release_lock_on_fetch

    def make_entry_attributes(self, attrs: ResourceAttributes) -> llfuse.EntryAttributes:
        file_type = stat.S_IFDIR if attrs.entry_type == EntryType.Directory else stat.S_IFREG

        entry = llfuse.EntryAttributes()
        entry.st_ino = attrs.inode
        entry.generation = 0
        entry.entry_timeout = self.entry_timeout
        entry.attr_timeout = self.attr_timeout
        entry.st_mode = file_type | attrs.permissions
        entry.st_nlink = attrs.nlink
        entry.st_uid = attrs.uid
        entry.st_gid = attrs.gid
        entry.st_rdev = 0
        entry.st_size = attrs.size
        entry.st_blksize = BLOCK_SIZE
        entry.st_blocks = (attrs.size + BLOCK_SIZE - 1) // BLOCK_SIZE
        entry.st_atime_ns = attrs.timestamp_ns
        entry.st_mtime_ns = attrs.timestamp_ns
        entry.st_ctime_ns = attrs.timestamp_ns
        return entry

    def _fetching(self) -> ContextManager[Any]:
        if self.release_lock_on_fetch:
            return llfuse.lock_released
        return contextlib.nullcontext()

    def _entry(self, inode: int) -> llfuse.EntryAttributes:
        attrs = self.store.attributes_of(inode)
        if attrs is None:
            raise llfuse.FUSEError(errno.ENOENT)
        return self.make_entry_attributes(attrs)

    def _children(self, inode: int) -> list[tuple[int, str]]:
        try:
            with self._fetching():
                return [(child, resource.name) for child, resource in self.store.children_of(inode)]
        except ResourceNotFound as e:
            raise llfuse.FUSEError(errno.ENOENT) from e
        except FetchError as e:
            logger.warning(f"Unable to list inode {inode}: {e}")
            raise llfuse.FUSEError(errno.ENOENT) from e

    def lookup(self, parent_inode: int, name: bytes, ctx: Any = None) -> llfuse.EntryAttributes:
        logger.debug(f"FUSE: Received lookup for {parent_inode=}/{name=}")
        if name == b".":
            return self._entry(parent_inode)
        if name == b"..":
            try:
                return self._entry(self.store.parent_of(parent_inode))
            except ResourceNotFound as e:
                raise llfuse.FUSEError(errno.ENOENT) from e

        try:
            with self._fetching():
                match = self.store.lookup_child(parent_inode, os.fsdecode(name))
        except ResourceNotFound as e:
            raise llfuse.FUSEError(errno.ENOENT) from e
        except FetchError as e:
            logger.warning(f"Unable to list inode {parent_inode}: {e}")
            raise llfuse.FUSEError(errno.ENOENT) from e

        if match is None:
            raise llfuse.FUSEError(errno.ENOENT)

        inode, _ = match
        logger.debug(f"FUSE: Resolved lookup {parent_inode=}/{name=} to {inode=}")
        return self._entry(inode)

    def getattr(self, inode: int, ctx: Any = None) -> llfuse.EntryAttributes:
        logger.debug(f"FUSE: Received getattr for {inode=}")
        return self._entry(inode)

    def opendir(self, inode: int, ctx: Any = None) -> int:
        logger.debug(f"FUSE: Received opendir for {inode=}")
        return inode

    def readdir(self, fh: int, off: int = 0) -> Iterator[tuple[bytes, llfuse.EntryAttributes, int]]:
        """List a directory, resuming after the `off` first entries.

        The listing is computed before the first entry is yielded, so that an unknown inode or a
        failed fetch is reported as an error instead of a truncated listing.
        """

        logger.debug(f"FUSE: Received readdir for {fh=} {off=}")
        inode = fh
        children = self._children(inode)
        try:
            parent = self.store.parent_of(inode)
        except ResourceNotFound as e:
            raise llfuse.FUSEError(errno.ENOENT) from e

        entries = [(inode, "."), (parent, "..")] + children
        result = [
            (os.fsencode(name), self._entry(entry_inode), position)
            for position, (entry_inode, name) in enumerate(entries, start=1)
            if position > off
        ]
        return iter(result)

    def releasedir(self, fh: int) -> None:
        pass

    def open(self, inode: int, flags: int, ctx: Any = None) -> int:
        logger.debug(f"FUSE: Received open for {inode=} {flags=}")
        return inode

    def read(self, fh: int, off: int, size: int) -> bytes:
        logger.debug(f"FUSE: Received read for {fh=} {off=} {size=}")
        attrs = self.store.attributes_of(fh)
        if attrs is None:
            raise llfuse.FUSEError(errno.ENOENT)
        if attrs.entry_type == EntryType.Directory:
            raise llfuse.FUSEError(errno.EISDIR)

        content = self.store.content_of(fh)
        return content[off : off + min(size, MAX_READ_SIZE)]

    def release(self, fh: int) -> None:
        pass

    def flush(self, fh: int) -> None:
        pass

    def forget(self, inode_list: list[tuple[int, int]]) -> None:
        # Inodes are derived from the resources, there is no lookup count to maintain
        pass

    def statfs(self, ctx: Any = None) -> llfuse.StatvfsData:
        stats = llfuse.StatvfsData()
        stats.f_bsize = BLOCK_SIZE
        stats.f_frsize = BLOCK_SIZE
        stats.f_blocks = 0
        stats.f_bfree = 0
        stats.f_bavail = 0
        stats.f_files = len(self.store)
        stats.f_ffree = 0
        stats.f_favail = 0
        stats.f_namemax = NAME_MAX
        return stats

    # ============================================================================================
    # Read-only filesystem. Everything below would modify the tree and always fails with ENOTSUP.
    # ============================================================================================

    def _not_supported(self, operation: str, inode: Optional[int] = None) -> None:
        logger.debug(f"FUSE: Rejected {operation} for {inode=}")
        raise llfuse.FUSEError(errno.ENOTSUP)

    def setattr(self, inode: int, attr: Any, fields: Any, fh: Optional[int], ctx: Any = None) -> None:
        self._not_supported("setattr", inode)

    def mknod(self, parent_inode: int, name: bytes, mode: int, rdev: int, ctx: Any = None) -> None:
        self._not_supported("mknod", parent_inode)

    def mkdir(self, parent_inode: int, name: bytes, mode: int, ctx: Any = None) -> None:
        self._not_supported("mkdir", parent_inode)

    def unlink(self, parent_inode: int, name: bytes, ctx: Any = None) -> None:
        self._not_supported("unlink", parent_inode)

    def rmdir(self, parent_inode: int, name: bytes, ctx: Any = None) -> None:
        self._not_supported("rmdir", parent_inode)

    def symlink(self, parent_inode: int, name: bytes, target: bytes, ctx: Any = None) -> None:
        self._not_supported("symlink", parent_inode)

    def rename(
        self, parent_inode_old: int, name_old: bytes, parent_inode_new: int, name_new: bytes, ctx: Any = None
    ) -> None:
        self._not_supported("rename", parent_inode_old)

    def link(self, inode: int, new_parent_inode: int, new_name: bytes, ctx: Any = None) -> None:
        self._not_supported("link", inode)

    def create(self, parent_inode: int, name: bytes, mode: int, flags: int, ctx: Any = None) -> None:
        self._not_supported("create", parent_inode)

    def write(self, fh: int, off: int, buf: bytes) -> None:
        self._not_supported("write", fh)

    def fsync(self, fh: int, datasync: bool) -> None:
        self._not_supported("fsync", fh)

    def fsyncdir(self, fh: int, datasync: bool) -> None:
        self._not_supported("fsyncdir", fh)

    def setxattr(self, inode: int, name: bytes, value: bytes, ctx: Any = None) -> None:
        self._not_supported("setxattr", inode)

    def getxattr(self, inode: int, name: bytes, ctx: Any = None) -> None:
        self._not_supported("getxattr", inode)

    def listxattr(self, inode: int, ctx: Any = None) -> None:
        self._not_supported("listxattr", inode)

    def removexattr(self, inode: int, name: bytes, ctx: Any = None) -> None:
        self._not_supported("removexattr", inode)
