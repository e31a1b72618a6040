from __future__ import annotations

from datetime import timedelta

import pytest

from connector.session import VersionPolicy
from trimmer.policy_gate import BLOCKED_COOLDOWN, BLOCKED_POLICY, PolicyGate, apply_version_policy
from trimmer.run_state import RunState, RunStateStore, target_key


def _state(now, minutes_ago):
    return RunState(site_url="s", last_run=now, last_dry_run=now, last_policy_change=now - timedelta(minutes=minutes_ago))


def test_pending_policy_blocks(session, now):
    session.policy = VersionPolicy(status="InProgress")

    decision = PolicyGate(session, None, now=now).check()

    assert decision.blocked is True
    assert decision.reason == BLOCKED_POLICY
    assert "pending" in decision.message


def test_policy_changed_ten_minutes_ago_is_in_cooldown(session, now):
    decision = PolicyGate(session, _state(now, 10), now=now).check()

    assert decision.blocked is True
    assert decision.reason == BLOCKED_COOLDOWN
    assert "20 more minute" in decision.message


@pytest.mark.parametrize("minutes_ago", [30, 31, 24 * 60])
def test_policy_change_outside_cooldown_proceeds(session, now, minutes_ago):
    decision = PolicyGate(session, _state(now, minutes_ago), now=now).check()

    assert decision.blocked is False
    assert decision.policy == session.policy


def test_no_state_and_settled_policy_proceeds(session, now):
    assert PolicyGate(session, None, now=now).check().blocked is False


def test_apply_version_policy_starts_cooldown(tmp_path, session, now):
    store = RunStateStore(tmp_path)

    state = apply_version_policy(session, store, 100, expire_versions_after_days=365, now=now)

    assert session.policy_updates == [(100, 365)]
    assert state.last_policy_change == now
    assert store.load(target_key(session.site_url)).last_policy_change == now
    later = PolicyGate(session, state, now=now + timedelta(minutes=5)).check()
    assert later.reason == BLOCKED_COOLDOWN


def test_apply_version_policy_rejects_non_positive_limit(tmp_path, session):
    with pytest.raises(ValueError):
        apply_version_policy(session, RunStateStore(tmp_path), 0)
    assert session.policy_updates == []
