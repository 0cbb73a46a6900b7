from __future__ import annotations

import logging
import os
import threading
import time
from collections import defaultdict
from typing import Iterable, Optional

from kubefs.core.abstract.fetcher import BaseResourceFetcher
from kubefs.core.exceptions import ResourceNotFound
from kubefs.core.identity import ROOT_INODE
from kubefs.core.models.objects import EntryType, Resource, ResourceAttributes

logger = logging.getLogger("kubefs")

DIRECTORY_PERMISSIONS = 0o555
FILE_PERMISSIONS = 0o444

ChildEntry = tuple[int, Resource]


class TreeStore:
    """The in-memory tree of cluster resources, keyed by inode.

    The root owns the namespaces, loaded once by `initialize`. A namespace owns its pods, loaded
    the first time anything asks for the namespace's children, and kept for the lifetime of the
    store.

    All reads and writes of the maps happen under one lock. Fetching pods happens outside of it,
    under a lock private to the namespace being populated, so a slow API call only blocks requests
    for that same namespace. The fetched children and the populated mark are published together,
    so a namespace is either fully populated or not at all.
    """

    def __init__(self, fetcher: BaseResourceFetcher, uid: Optional[int] = None, gid: Optional[int] = None) -> None:
        self.fetcher = fetcher
        self.uid = uid if uid is not None else os.getuid()
        self.gid = gid if gid is not None else os.getgid()
        self.created_at_ns = time.time_ns()

        self._lock = threading.Lock()
        self._resources: dict[int, Resource] = {}
        self._children: dict[int, list[int]] = {ROOT_INODE: []}
        self._populated: set[int] = {ROOT_INODE}
        self._population_locks: defaultdict[int, threading.Lock] = defaultdict(threading.Lock)

    def __len__(self) -> int:
        with self._lock:
            return len(self._resources) + 1

    def initialize(self) -> None:
        """Load the namespaces under the root.

        Raises `FetchError` if the cluster can not be listed: there is no filesystem to mount then.
        """

        names = self.fetcher.list_namespaces()
        namespaces = [Resource.namespace(name) for name in names]

        with self._lock:
            inodes = self._register(namespaces)
            self._children[ROOT_INODE] = inodes

        logger.info(f"Loaded {len(inodes)} namespaces")

    def get(self, inode: int) -> Optional[Resource]:
        with self._lock:
            return self._resources.get(inode)

    def children_of(self, inode: int) -> list[ChildEntry]:
        """Return the children of a directory inode, populating a namespace on first access.

        Files have no children. Raises `ResourceNotFound` for unknown inodes, and lets a `FetchError`
        from the fetcher propagate, leaving the namespace unpopulated so that a later call retries.
        """

        with self._lock:
            children = self._cached_children(inode)
            if children is not None:
                return children
            resource = self._resources[inode]
            population_lock = self._population_locks[inode]

        with population_lock:
            # Somebody else may have populated it while we were waiting for the lock
            with self._lock:
                children = self._cached_children(inode)
                if children is not None:
                    return children

            logger.debug(f"Populating {resource}")
            names = self.fetcher.list_pods(resource.name)
            pods = [Resource.pod(resource.name, name) for name in names]

            with self._lock:
                self._children[inode] = self._register(pods)
                self._populated.add(inode)
                logger.debug(f"Populated {resource} with {len(self._children[inode])} pods")
                return self._entries(self._children[inode])

    def lookup_child(self, parent: int, name: str) -> Optional[ChildEntry]:
        for inode, resource in self.children_of(parent):
            if resource.name == name:
                return inode, resource
        return None

    def parent_of(self, inode: int) -> int:
        """Return the inode of the directory holding `inode`. The root is its own parent."""

        if inode == ROOT_INODE:
            return ROOT_INODE

        resource = self.get(inode)
        if resource is None:
            raise ResourceNotFound(inode)

        if resource.parent_name is None:
            return ROOT_INODE
        return Resource.namespace(resource.parent_name).inode

    def attributes_of(self, inode: int) -> Optional[ResourceAttributes]:
        if inode == ROOT_INODE:
            return self._attributes(inode, EntryType.Directory, 0)

        resource = self.get(inode)
        if resource is None:
            return None

        size = 0 if resource.is_directory else len(self.content_of(inode))
        return self._attributes(inode, resource.entry_type, size)

    def content_of(self, inode: int) -> bytes:
        """The placeholder payload of a file resource."""

        resource = self.get(inode)
        if resource is None:
            raise ResourceNotFound(inode)

        lines = [f"kind: {resource.kind}"]
        if resource.parent_name is not None:
            lines.append(f"namespace: {resource.parent_name}")
        lines.append(f"name: {resource.name}")
        return ("\n".join(lines) + "\n").encode("utf-8", "surrogateescape")

    def _attributes(self, inode: int, entry_type: EntryType, size: int) -> ResourceAttributes:
        is_directory = entry_type == EntryType.Directory
        return ResourceAttributes(
            inode=inode,
            entry_type=entry_type,
            permissions=DIRECTORY_PERMISSIONS if is_directory else FILE_PERMISSIONS,
            nlink=2 if is_directory else 1,
            size=size,
            uid=self.uid,
            gid=self.gid,
            timestamp_ns=self.created_at_ns,
        )

    # NOTE: methods below are called with self._lock held

    def _cached_children(self, inode: int) -> Optional[list[ChildEntry]]:
        if inode != ROOT_INODE and inode not in self._resources:
            raise ResourceNotFound(inode)

        if inode in self._populated:
            return self._entries(self._children[inode])

        if not self._resources[inode].is_directory:
            return []

        return None

    def _entries(self, inodes: Iterable[int]) -> list[ChildEntry]:
        return [(inode, self._resources[inode]) for inode in inodes]

    def _register(self, resources: Iterable[Resource]) -> list[int]:
        inodes: list[int] = []
        seen: set[int] = set()
        for resource in resources:
            inode = resource.inode
            known = self._resources.get(inode)
            if known is not None and known != resource:
                logger.error(f"Inode {inode} of {resource} collides with {known}, skipping it")
                continue
            if inode in seen:
                logger.warning(f"Duplicate {resource} in listing, skipping it")
                continue

            logger.debug(f"Adding {resource} with inode {inode}")
            self._resources[inode] = resource
            seen.add(inode)
            inodes.append(inode)
        return inodes
