"""Pytest configuration and shared fixtures for trimmer tests."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from connector.runtime_config import build_options
from connector.session import FileItem, FileVersion, ItemPage, Library, VersionPolicy
from trimmer.exception_sink import ExceptionSink
from trimmer.progress_tracker import ProgressTracker
from trimmer.run_state import RunStateStore
from trimmer.trim_engine import TrimEngine


SITE_URL = "https://contoso.sharepoint.com/sites/Records"
NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeSession:
    """In-memory site with paginated items and per-file version lists."""

    def __init__(self, site_url: str = SITE_URL, libraries: Optional[List[Library]] = None) -> None:
        self.site_url = site_url
        self.libraries = libraries or [
            Library(title="Documents", id="lib-docs", root_url="/sites/Records/Shared Documents")
        ]
        self.policy = VersionPolicy(status="Completed", major_version_limit=500)
        self.items: Dict[str, List[FileItem]] = {}
        self.versions: Dict[int, List[FileVersion]] = {}
        self.load_errors: Dict[int, Exception] = {}
        self.delete_errors: Dict[Tuple[int, ...], Exception] = {}
        self.page_errors: Dict[str, Exception] = {}
        self.load_calls: List[int] = []
        self.delete_calls: List[Tuple[int, List[int]]] = []
        self.page_calls: List[Tuple[str, Optional[str]]] = []
        self.policy_updates: List[Tuple[int, Optional[int]]] = []

    def add_file(
        self,
        item_id: int,
        leaf_name: str,
        version_ages: Sequence[int] = (),
        library: str = "Documents",
        current_age: int = 0,
        now: datetime = NOW,
        size: int = 1024,
    ) -> FileItem:
        item = FileItem(
            id=item_id,
            file_ref=f"/sites/Records/Shared Documents/{leaf_name}",
            leaf_name=leaf_name,
            size=size,
        )
        self.items.setdefault(library, []).append(item)
        versions = [
            FileVersion(id=item_id * 1000 + index, label=f"{index}.0", created=now - timedelta(days=age))
            for index, age in enumerate(version_ages, start=1)
        ]
        versions.append(
            FileVersion(
                id=None,
                label=f"{len(versions) + 1}.0",
                created=now - timedelta(days=current_age),
                is_current=True,
            )
        )
        self.versions[item_id] = versions
        return item

    def add_folder(self, item_id: int, name: str, library: str = "Documents") -> None:
        self.items.setdefault(library, []).append(
            FileItem(id=item_id, file_ref=f"/sites/Records/Shared Documents/{name}", leaf_name=name, is_file=False)
        )

    def get_version_policy(self) -> VersionPolicy:
        return self.policy

    def set_version_policy(self, major_version_limit: int, expire_versions_after_days: Optional[int] = None) -> None:
        self.policy_updates.append((major_version_limit, expire_versions_after_days))

    def list_libraries(self) -> List[Library]:
        return list(self.libraries)

    def fetch_item_page(self, library: Library, page_size: int, token: Optional[str] = None) -> ItemPage:
        self.page_calls.append((library.title, token))
        if library.title in self.page_errors:
            raise self.page_errors[library.title]
        items = self.items.get(library.title, [])
        start = int(token or 0)
        end = start + page_size
        return ItemPage(items=items[start:end], next_token=str(end) if end < len(items) else None)

    def load_versions(self, library: Library, item: FileItem) -> List[FileVersion]:
        self.load_calls.append(item.id)
        if item.id in self.load_errors:
            raise self.load_errors[item.id]
        return list(self.versions.get(item.id, []))

    def delete_versions(self, library: Library, item: FileItem, version_ids: Sequence[int]) -> None:
        self.delete_calls.append((item.id, list(version_ids)))
        error = self.delete_errors.get(tuple(version_ids))
        if error is not None:
            raise error
        self.versions[item.id] = [v for v in self.versions[item.id] if v.id not in set(version_ids)]


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def sleeper():
    return RecordingSleep()


@pytest.fixture
def make_options(tmp_path):
    def _make(**overrides):
        values = {
            "libraries": ["Documents"],
            "older_than_days": 45,
            "auto_continue": True,
            "batch_pause_seconds": 0,
            "max_retries": 3,
            "state_dir": tmp_path / "state",
            "exception_log": tmp_path / "logs" / "exceptions.csv",
        }
        values.update(overrides)
        return build_options(**values)

    return _make


@pytest.fixture
def make_engine(tmp_path, sleeper):
    def _make(session, options, now=NOW, **kwargs):
        kwargs.setdefault("progress", ProgressTracker(verbose=False))
        return TrimEngine(
            session,
            options,
            state_store=RunStateStore(options.state_dir),
            sink=ExceptionSink(options.exception_log, clock=lambda: now),
            now=now,
            sleep=sleeper,
            **kwargs,
        )

    return _make
