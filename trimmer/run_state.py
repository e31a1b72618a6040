"""Per-site run state persisted between trim runs.

The state answers two questions before every run: has this site ever had a
dry run (if not, the run is forced into dry-run mode), and when did its
version policy last change (for the cooldown check).
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from connector.session import parse_remote_datetime
from trimmer.schema_validator import SchemaValidator


LOGGER = logging.getLogger("versiontrim.state")

STATE_SCHEMA = "run-state.schema.json"
_SLUG_RE = re.compile(r"[^a-z0-9]+")


class RunStateError(RuntimeError):
    """Raised when a persisted state file cannot be trusted."""


@dataclass(frozen=True)
class RunState:
    site_url: str
    last_run: Optional[datetime] = None
    last_dry_run: Optional[datetime] = None
    last_policy_change: Optional[datetime] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "siteUrl": self.site_url,
            "lastRunTimestamp": _iso(self.last_run),
            "lastDryRunTimestamp": _iso(self.last_dry_run),
            "lastPolicyChangeTimestamp": _iso(self.last_policy_change),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RunState":
        return cls(
            site_url=payload["siteUrl"],
            last_run=_timestamp(payload, "lastRunTimestamp"),
            last_dry_run=_timestamp(payload, "lastDryRunTimestamp"),
            last_policy_change=_timestamp(payload, "lastPolicyChangeTimestamp"),
        )


def _timestamp(payload: Dict[str, Any], name: str) -> Optional[datetime]:
    raw = payload.get(name)
    if raw is None:
        return None
    parsed = parse_remote_datetime(raw)
    if parsed is None:
        raise RunStateError(f"{name} is not an ISO-8601 timestamp: {raw!r}")
    return parsed


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.astimezone(timezone.utc).isoformat() if value else None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def target_key(site_url: str) -> str:
    """Stable, filesystem-safe key for a site address."""
    normalized = site_url.strip().rstrip("/").lower()
    if not normalized:
        raise ValueError("site_url is required to derive a state key.")
    digest = hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]
    without_scheme = normalized.split("://", 1)[-1]
    slug = _SLUG_RE.sub("-", without_scheme).strip("-")[:48]
    return f"{slug}-{digest}" if slug else digest


def is_first_run(state: Optional[RunState]) -> bool:
    return state is None or state.last_dry_run is None


def effective_dry_run(state: Optional[RunState], delete_requested: bool) -> bool:
    """A delete is only honoured once a dry run is on record for the site."""
    return is_first_run(state) or not delete_requested


class RunStateStore:
    def __init__(self, state_dir: Path, validator: Optional[SchemaValidator] = None) -> None:
        self.state_dir = Path(state_dir)
        self._validator = validator or SchemaValidator()

    def path_for(self, key: str) -> Path:
        return self.state_dir / f"{key}.json"

    def load(self, key: str) -> Optional[RunState]:
        path = self.path_for(key)
        if not path.exists():
            return None
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise RunStateError(f"Run state file {path} is unreadable: {exc}") from exc
        if not isinstance(payload, dict):
            raise RunStateError(f"Run state file {path} must contain a JSON object.")
        try:
            self._validator.validate(payload, STATE_SCHEMA)
        except ValueError as exc:
            raise RunStateError(f"Run state file {path} is invalid: {exc}") from exc
        try:
            return RunState.from_payload(payload)
        except RunStateError as exc:
            raise RunStateError(f"Run state file {path} is invalid: {exc}") from exc

    def save(self, key: str, state: RunState) -> Path:
        payload = state.to_payload()
        self._validator.validate(payload, STATE_SCHEMA)
        path = self.path_for(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        with tmp_path.open("w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2)
            handle.write("\n")
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
        LOGGER.debug("Saved run state to %s", path)
        return path

    def record_run(self, key: str, site_url: str, previous: Optional[RunState], dry_run: bool, now: datetime) -> RunState:
        base = previous or RunState(site_url=site_url)
        state = replace(
            base,
            site_url=site_url,
            last_run=now,
            last_dry_run=now if dry_run else base.last_dry_run,
        )
        self.save(key, state)
        return state

    def record_policy_change(self, key: str, site_url: str, when: Optional[datetime] = None) -> RunState:
        previous = self.load(key)
        base = previous or RunState(site_url=site_url)
        state = replace(base, site_url=site_url, last_policy_change=when or _utc_now())
        self.save(key, state)
        return state
