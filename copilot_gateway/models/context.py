"""Request-scoped context documents and access scope."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterator, Mapping, Optional


class ContextKind(str, Enum):
    """Which content source a context document came from."""
    CONTAINER = "container"
    TASK = "task"
    MESSAGE = "message"
    FILE = "file"


@dataclass
class ContextDocument:
    """Ephemeral projection of one content item. Never persisted."""
    kind: ContextKind
    source: str  # human-readable label, e.g. "Container: Website Redesign"
    text: str
    base_weight: float
    container_id: str
    item_id: str
    created_at: Optional[datetime] = None
    score: float = 0.0


@dataclass(frozen=True)
class AccessGrant:
    """A subject's grant on one client-visible container."""
    container_id: str
    role: str = "viewer"
    can_view_tasks: bool = False
    can_view_files: bool = False
    can_send_messages: bool = False


@dataclass(frozen=True)
class AccessibleScope(Mapping[str, AccessGrant]):
    """Containers a subject may read, keyed by container id.

    Only the scope resolver builds non-empty scopes; every content fetch is
    keyed by ids taken from one of these.
    """
    subject_id: str
    grants: Dict[str, AccessGrant] = field(default_factory=dict)

    def __getitem__(self, container_id: str) -> AccessGrant:
        return self.grants[container_id]

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.grants))

    def __len__(self) -> int:
        return len(self.grants)

    @property
    def container_ids(self) -> frozenset:
        return frozenset(self.grants)

    def ids_where(self, permission: str) -> list:
        """Sorted container ids whose grant carries ``permission``."""
        return sorted(cid for cid, grant in self.grants.items() if getattr(grant, permission))
