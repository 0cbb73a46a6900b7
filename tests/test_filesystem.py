import errno
import stat
import threading
from unittest.mock import patch

import llfuse
import pytest

from kubefs.core.exceptions import RemoteFetchError
from kubefs.core.filesystem import MAX_READ_SIZE, KubeFS
from kubefs.core.identity import ROOT_INODE, identifier_of
from kubefs.core.models.objects import Resource
from kubefs.core.tree import TreeStore

from .conftest import FakeFetcher, watch_population

DEFAULT_INODE = identifier_of(Resource.namespace("default"))
KUBE_SYSTEM_INODE = identifier_of(Resource.namespace("kube-system"))
WEB_INODE = identifier_of(Resource.pod("default", "web-1"))
UNKNOWN_INODE = 12345


@pytest.fixture
def fs(store: TreeStore) -> KubeFS:
    return KubeFS(store, attr_timeout=1.0, entry_timeout=2.0)


def listing(fs: KubeFS, inode: int, off: int = 0) -> list[tuple[bytes, int, int]]:
    fh = fs.opendir(inode, None)
    try:
        return [(name, attrs.st_ino, position) for name, attrs, position in fs.readdir(fh, off)]
    finally:
        fs.releasedir(fh)


def assert_fuse_error(code: int, func, *args) -> None:
    with pytest.raises(llfuse.FUSEError) as exc_info:
        func(*args)
    assert exc_info.value.errno == code


def test_readdir_root(fs: KubeFS):
    assert listing(fs, ROOT_INODE) == [
        (b".", ROOT_INODE, 1),
        (b"..", ROOT_INODE, 2),
        (b"default", DEFAULT_INODE, 3),
        (b"kube-system", KUBE_SYSTEM_INODE, 4),
    ]


def test_readdir_is_stable(fs: KubeFS):
    assert listing(fs, ROOT_INODE) == listing(fs, ROOT_INODE)


@pytest.mark.parametrize("off, expected", [(0, 4), (2, 2), (3, 1), (4, 0), (5, 0), (100, 0)])
def test_readdir_offset(fs: KubeFS, off: int, expected: int):
    entries = listing(fs, ROOT_INODE, off)

    assert len(entries) == expected
    # Positions always refer to the full listing, so a listing can be resumed from any of them
    assert entries == listing(fs, ROOT_INODE)[off:]


def test_readdir_namespace(fs: KubeFS, fetcher: FakeFetcher):
    assert listing(fs, DEFAULT_INODE) == [
        (b".", DEFAULT_INODE, 1),
        (b"..", ROOT_INODE, 2),
        (b"web-1", WEB_INODE, 3),
    ]
    assert listing(fs, DEFAULT_INODE, 3) == []
    assert fetcher.calls["default"] == 1


def test_readdir_entry_attributes(fs: KubeFS):
    entries = {name: attrs for name, attrs, _ in fs.readdir(fs.opendir(DEFAULT_INODE, None), 0)}

    assert stat.S_ISDIR(entries[b"."].st_mode)
    assert stat.S_ISDIR(entries[b".."].st_mode)
    assert stat.S_ISREG(entries[b"web-1"].st_mode)


def test_readdir_unknown_inode(fs: KubeFS):
    assert_fuse_error(errno.ENOENT, fs.readdir, UNKNOWN_INODE, 0)


def test_readdir_fetch_failure(fs: KubeFS, fetcher: FakeFetcher):
    fetcher.failures["default"] = RemoteFetchError("boom")

    assert_fuse_error(errno.ENOENT, fs.readdir, DEFAULT_INODE, 0)

    # The next request tries again
    del fetcher.failures["default"]
    assert [name for name, _, _ in listing(fs, DEFAULT_INODE)] == [b".", b"..", b"web-1"]


def test_lookup_matches_readdir(fs: KubeFS):
    for name, inode, _ in listing(fs, ROOT_INODE)[2:]:
        assert fs.lookup(ROOT_INODE, name, None).st_ino == inode


def test_lookup_namespace(fs: KubeFS):
    entry = fs.lookup(ROOT_INODE, b"default", None)

    assert entry.st_ino == DEFAULT_INODE
    assert stat.S_ISDIR(entry.st_mode)
    assert entry.attr_timeout == 1.0
    assert entry.entry_timeout == 2.0


def test_lookup_pod(fs: KubeFS):
    entry = fs.lookup(DEFAULT_INODE, b"web-1", None)

    assert entry.st_ino == WEB_INODE
    assert stat.S_ISREG(entry.st_mode)
    assert stat.S_IMODE(entry.st_mode) == 0o444


def test_lookup_resolves_through_store(fs: KubeFS):
    with patch.object(fs.store, "lookup_child", wraps=fs.store.lookup_child) as lookup_child:
        assert fs.lookup(DEFAULT_INODE, b"web-1", None).st_ino == WEB_INODE
        assert_fuse_error(errno.ENOENT, fs.lookup, DEFAULT_INODE, b"missing", None)

    assert [c.args for c in lookup_child.call_args_list] == [(DEFAULT_INODE, "web-1"), (DEFAULT_INODE, "missing")]


def test_lookup_missing(fs: KubeFS):
    assert_fuse_error(errno.ENOENT, fs.lookup, DEFAULT_INODE, b"missing", None)
    assert_fuse_error(errno.ENOENT, fs.lookup, ROOT_INODE, b"missing", None)
    assert_fuse_error(errno.ENOENT, fs.lookup, UNKNOWN_INODE, b"web-1", None)


def test_lookup_dot_entries(fs: KubeFS):
    assert fs.lookup(DEFAULT_INODE, b".", None).st_ino == DEFAULT_INODE
    assert fs.lookup(DEFAULT_INODE, b"..", None).st_ino == ROOT_INODE
    assert fs.lookup(ROOT_INODE, b"..", None).st_ino == ROOT_INODE
    assert_fuse_error(errno.ENOENT, fs.lookup, UNKNOWN_INODE, b"..", None)


def test_lookup_fetch_failure(fs: KubeFS, fetcher: FakeFetcher):
    fetcher.failures["default"] = RemoteFetchError("boom")

    assert_fuse_error(errno.ENOENT, fs.lookup, DEFAULT_INODE, b"web-1", None)


def test_getattr(fs: KubeFS):
    root = fs.getattr(ROOT_INODE, None)
    assert root.st_ino == ROOT_INODE
    assert stat.S_ISDIR(root.st_mode)

    fs.lookup(DEFAULT_INODE, b"web-1", None)
    pod = fs.getattr(WEB_INODE, None)
    assert pod.st_ino == WEB_INODE
    assert pod.st_size == len(b"kind: pod\nnamespace: default\nname: web-1\n")
    assert pod.attr_timeout == 1.0

    assert_fuse_error(errno.ENOENT, fs.getattr, UNKNOWN_INODE, None)


def test_read(fs: KubeFS):
    fs.lookup(DEFAULT_INODE, b"web-1", None)
    fh = fs.open(WEB_INODE, 0, None)

    assert fs.read(fh, 0, 4096) == b"kind: pod\nnamespace: default\nname: web-1\n"
    assert fs.read(fh, 10, 9) == b"namespace"
    assert fs.read(fh, 4096, 4096) == b""
    fs.release(fh)


def test_read_is_capped(store: TreeStore):
    fs = KubeFS(store)
    fs.lookup(DEFAULT_INODE, b"web-1", None)

    assert len(fs.read(WEB_INODE, 0, MAX_READ_SIZE * 2)) <= MAX_READ_SIZE


def test_read_errors(fs: KubeFS):
    assert_fuse_error(errno.EISDIR, fs.read, ROOT_INODE, 0, 4096)
    assert_fuse_error(errno.EISDIR, fs.read, DEFAULT_INODE, 0, 4096)
    assert_fuse_error(errno.ENOENT, fs.read, UNKNOWN_INODE, 0, 4096)


def test_open_and_close_are_stateless(fs: KubeFS):
    assert fs.opendir(DEFAULT_INODE, None) == DEFAULT_INODE
    assert fs.open(WEB_INODE, 0, None) == WEB_INODE
    fs.releasedir(DEFAULT_INODE)
    fs.release(WEB_INODE)
    fs.flush(WEB_INODE)
    fs.forget([(WEB_INODE, 1)])


def test_statfs(fs: KubeFS, store: TreeStore):
    stats = fs.statfs(None)

    assert stats.f_files == len(store)
    assert stats.f_namemax == 255


@pytest.mark.parametrize("inode", [ROOT_INODE, DEFAULT_INODE, WEB_INODE, UNKNOWN_INODE])
@pytest.mark.parametrize(
    "operation, args",
    [
        ("setattr", lambda inode: (inode, llfuse.EntryAttributes(), None, None, None)),
        ("mknod", lambda inode: (inode, b"new", 0o644, 0, None)),
        ("mkdir", lambda inode: (inode, b"new", 0o755, None)),
        ("unlink", lambda inode: (inode, b"web-1", None)),
        ("rmdir", lambda inode: (inode, b"default", None)),
        ("symlink", lambda inode: (inode, b"new", b"web-1", None)),
        ("rename", lambda inode: (inode, b"web-1", inode, b"web-2", None)),
        ("link", lambda inode: (inode, ROOT_INODE, b"new", None)),
        ("create", lambda inode: (inode, b"new", 0o644, 0, None)),
        ("write", lambda inode: (inode, 0, b"data")),
        ("fsync", lambda inode: (inode, False)),
        ("fsyncdir", lambda inode: (inode, False)),
        ("setxattr", lambda inode: (inode, b"user.key", b"value", None)),
        ("getxattr", lambda inode: (inode, b"user.key", None)),
        ("listxattr", lambda inode: (inode, None)),
        ("removexattr", lambda inode: (inode, b"user.key", None)),
    ],
)
def test_mutations_are_not_supported(fs: KubeFS, store: TreeStore, inode: int, operation: str, args):
    fs.lookup(DEFAULT_INODE, b"web-1", None)
    before = listing(fs, DEFAULT_INODE)

    assert_fuse_error(errno.ENOTSUP, getattr(fs, operation), *args(inode))

    assert listing(fs, DEFAULT_INODE) == before


def test_concurrent_readdir_fetches_once(fs: KubeFS, fetcher: FakeFetcher):
    population_lock = watch_population(fs.store, KUBE_SYSTEM_INODE)
    fetcher.gate = threading.Event()
    results: list = [None, None]

    def read_directory(i: int) -> None:
        results[i] = listing(fs, KUBE_SYSTEM_INODE)

    threads = [threading.Thread(target=read_directory, args=(i,)) for i in range(2)]
    threads[0].start()
    assert fetcher.entered.wait(timeout=5)
    threads[1].start()
    assert population_lock.wait_for_requests(2)

    fetcher.gate.set()
    for thread in threads:
        thread.join(timeout=5)

    assert fetcher.calls["kube-system"] == 1
    assert results[0] == results[1]
    assert [name for name, _, _ in results[0]] == [b".", b"..", b"coredns-1", b"etcd-control-plane"]
