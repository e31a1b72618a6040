from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence


DOCUMENT_LIBRARY_TEMPLATE = 101
PENDING_POLICY_STATUSES = {"pending", "new", "inprogress", "in progress", "in_progress"}


class RemoteError(Exception):
    """Raised when the remote document store rejects a request."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class Library:
    title: str
    id: str
    root_url: str = ""
    hidden: bool = False
    base_template: int = DOCUMENT_LIBRARY_TEMPLATE
    item_count: int = 0

    @property
    def is_document_library(self) -> bool:
        return self.base_template == DOCUMENT_LIBRARY_TEMPLATE


@dataclass(frozen=True)
class FileItem:
    id: int
    file_ref: str
    leaf_name: str
    is_file: bool = True
    size: int = 0


@dataclass(frozen=True)
class FileVersion:
    id: Optional[int]
    label: str
    created: datetime
    is_current: bool = False


@dataclass(frozen=True)
class ItemPage:
    items: List[FileItem]
    next_token: Optional[str] = None


@dataclass(frozen=True)
class VersionPolicy:
    status: Optional[str] = None
    major_version_limit: Optional[int] = None
    expire_versions_after_days: Optional[int] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def pending(self) -> bool:
        if not self.status:
            return False
        return self.status.strip().lower() in PENDING_POLICY_STATUSES


class LibrarySession(Protocol):
    """An authenticated handle bound to one site."""

    site_url: str

    def get_version_policy(self) -> VersionPolicy: ...

    def set_version_policy(
        self,
        major_version_limit: int,
        expire_versions_after_days: Optional[int] = None,
    ) -> None: ...

    def list_libraries(self) -> List[Library]: ...

    def fetch_item_page(self, library: Library, page_size: int, token: Optional[str] = None) -> ItemPage: ...

    def load_versions(self, library: Library, item: FileItem) -> List[FileVersion]: ...

    def delete_versions(self, library: Library, item: FileItem, version_ids: Sequence[int]) -> None: ...


def parse_remote_datetime(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    normalized = value.strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
