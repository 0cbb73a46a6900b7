from __future__ import annotations

import enum
from typing import Literal, Optional, Union

import pydantic as pd

KindLiteral = Literal["namespace", "pod"]


class EntryType(str, enum.Enum):
    """How a resource renders in the filesystem."""

    Directory = "directory"
    File = "file"


class ClusterScope(pd.BaseModel):
    model_config = pd.ConfigDict(frozen=True)

    scope: Literal["cluster"] = "cluster"
    name: str


class NamespaceScope(pd.BaseModel):
    model_config = pd.ConfigDict(frozen=True)

    scope: Literal["namespaced"] = "namespaced"
    namespace: str
    name: str


AnyScope = Union[ClusterScope, NamespaceScope]


class Resource(pd.BaseModel):
    """A cluster object as seen by the filesystem.

    A resource only knows its own scope. The parent/children relation lives in the tree store,
    so a pod never holds a reference to its namespace, it only names it.
    """

    model_config = pd.ConfigDict(frozen=True)

    scope: AnyScope = pd.Field(discriminator="scope")
    kind: KindLiteral
    entry_type: EntryType

    @classmethod
    def namespace(cls, name: str) -> Resource:
        return cls(scope=ClusterScope(name=name), kind="namespace", entry_type=EntryType.Directory)

    @classmethod
    def pod(cls, namespace: str, name: str) -> Resource:
        return cls(scope=NamespaceScope(namespace=namespace, name=name), kind="pod", entry_type=EntryType.File)

    @property
    def name(self) -> str:
        """The name used as a single path segment."""

        if isinstance(self.scope, ClusterScope):
            return self.scope.name
        elif isinstance(self.scope, NamespaceScope):
            return self.scope.name

        raise TypeError(f"Unknown resource scope: {self.scope!r}")

    @property
    def parent_name(self) -> Optional[str]:
        """The owning namespace, or None for cluster-scoped resources."""

        if isinstance(self.scope, ClusterScope):
            return None
        elif isinstance(self.scope, NamespaceScope):
            return self.scope.namespace

        raise TypeError(f"Unknown resource scope: {self.scope!r}")

    @property
    def is_directory(self) -> bool:
        return self.entry_type == EntryType.Directory

    @property
    def inode(self) -> int:
        from kubefs.core.identity import identifier_of

        return identifier_of(self)

    def __str__(self) -> str:
        if self.parent_name is None:
            return f"{self.kind} {self.name}"
        return f"{self.kind} {self.parent_name}/{self.name}"


class ResourceAttributes(pd.BaseModel):
    """Static stat record of an inode."""

    model_config = pd.ConfigDict(frozen=True)

    inode: int
    entry_type: EntryType
    permissions: int
    nlink: int
    size: int = 0
    uid: int
    gid: int
    timestamp_ns: int = 0
