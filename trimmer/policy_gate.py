from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from connector.session import LibrarySession, VersionPolicy
from trimmer.retry_utils import RetryConfig, with_retry
from trimmer.run_state import RunState, RunStateStore, target_key


LOGGER = logging.getLogger("versiontrim.policy")

POLICY_COOLDOWN = timedelta(minutes=30)

BLOCKED_POLICY = "policy"
BLOCKED_COOLDOWN = "cooldown"


@dataclass(frozen=True)
class GateDecision:
    blocked: bool
    reason: Optional[str] = None
    message: str = ""
    policy: Optional[VersionPolicy] = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class PolicyGate:
    """Refuses to trim while the site's version policy is settling."""

    def __init__(
        self,
        session: LibrarySession,
        state: Optional[RunState],
        retry_config: Optional[RetryConfig] = None,
        now: Optional[datetime] = None,
        sleep=None,
    ) -> None:
        self.session = session
        self.state = state
        self.retry_config = retry_config or RetryConfig()
        self.now = now
        self._retry_kwargs = {"sleep": sleep} if sleep is not None else {}

    def check(self) -> GateDecision:
        current = self.now or _utc_now()
        policy = with_retry(
            self.session.get_version_policy,
            self.retry_config,
            "Read version policy",
            **self._retry_kwargs,
        )
        if policy.pending:
            message = f"Version policy change is pending (status: {policy.status}); no items will be processed."
            LOGGER.warning(message, extra={"site": self.session.site_url, "outcome": "blocked_policy"})
            return GateDecision(blocked=True, reason=BLOCKED_POLICY, message=message, policy=policy)

        changed_at = self.state.last_policy_change if self.state else None
        if changed_at is not None and current - changed_at < POLICY_COOLDOWN:
            remaining = POLICY_COOLDOWN - (current - changed_at)
            minutes = math.ceil(remaining.total_seconds() / 60)
            message = (
                f"Version policy changed at {changed_at.isoformat()}; "
                f"waiting for it to propagate (about {minutes} more minute(s))."
            )
            LOGGER.warning(message, extra={"site": self.session.site_url, "outcome": "blocked_cooldown"})
            return GateDecision(blocked=True, reason=BLOCKED_COOLDOWN, message=message, policy=policy)

        return GateDecision(blocked=False, policy=policy)


def apply_version_policy(
    session: LibrarySession,
    store: RunStateStore,
    major_version_limit: int,
    expire_versions_after_days: Optional[int] = None,
    retry_config: Optional[RetryConfig] = None,
    now: Optional[datetime] = None,
) -> RunState:
    """Write a version-limit policy and start the cooldown for the site."""
    if major_version_limit < 1:
        raise ValueError("major_version_limit must be a positive integer.")
    if expire_versions_after_days is not None and expire_versions_after_days < 1:
        raise ValueError("expire_versions_after_days must be a positive integer.")
    with_retry(
        lambda: session.set_version_policy(major_version_limit, expire_versions_after_days),
        retry_config,
        "Apply version policy",
    )
    state = store.record_policy_change(target_key(session.site_url), session.site_url, now or _utc_now())
    LOGGER.info(
        "Applied version policy (major limit %d); trimming is paused for %d minutes",
        major_version_limit,
        int(POLICY_COOLDOWN.total_seconds() // 60),
        extra={"site": session.site_url},
    )
    return state
