"""Inode numbers for cluster resources.

The filesystem addresses everything by inode alone, and keeps no per-request state, so the inode
of a resource has to be re-derivable from the resource itself: lookup, readdir and getattr for the
same pod must agree without ever consulting each other.

The inode is a 64-bit BLAKE2b digest of a canonical encoding of the resource identity (kind, scope,
namespace and name). There is no salt, so the value is the same on every call for the lifetime of
the process (and across processes, which the kernel does not rely on but makes debugging easier).

Uniqueness is probabilistic, not guaranteed. With 64 bits the birthday bound gives a collision
chance of roughly n^2 / 2^65, about 1e-11 for 20,000 objects. The tree store checks for collisions
when it registers resources and refuses to merge two objects under one inode.
"""

import hashlib

from kubefs.core.models.objects import ClusterScope, NamespaceScope, Resource

# Inode 0 is invalid for FUSE and 1 is the root directory.
INVALID_INODE = 0
ROOT_INODE = 1
RESERVED_INODES = frozenset({INVALID_INODE, ROOT_INODE})

_DIGEST_SIZE = 8


def _identity_key(resource: Resource) -> bytes:
    if isinstance(resource.scope, ClusterScope):
        fields = (resource.kind, resource.scope.scope, "", resource.scope.name)
    elif isinstance(resource.scope, NamespaceScope):
        fields = (resource.kind, resource.scope.scope, resource.scope.namespace, resource.scope.name)
    else:
        raise TypeError(f"Unknown resource scope: {resource.scope!r}")

    # NUL can not appear in kubernetes names, so the encoding is unambiguous
    return "\0".join(fields).encode("utf-8", "surrogateescape")


def _digest(key: bytes, attempt: int) -> int:
    h = hashlib.blake2b(key, digest_size=_DIGEST_SIZE)
    if attempt:
        h.update(attempt.to_bytes(4, "big"))
    return int.from_bytes(h.digest(), "big")


def identifier_of(resource: Resource) -> int:
    """Return the inode number of a resource.

    Deterministic, and never one of the reserved inodes: if the digest lands on one, the key is
    re-hashed with an increasing round number until it does not.
    """

    key = _identity_key(resource)
    attempt = 0
    inode = _digest(key, attempt)
    while inode in RESERVED_INODES:
        attempt += 1
        inode = _digest(key, attempt)
    return inode
