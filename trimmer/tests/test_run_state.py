from __future__ import annotations

import json
import re
from datetime import timedelta

import pytest

from trimmer.run_state import (
    RunState,
    RunStateError,
    RunStateStore,
    effective_dry_run,
    is_first_run,
    target_key,
)


def test_target_key_is_stable_and_filesystem_safe():
    key = target_key("https://Contoso.sharepoint.com/sites/Records/")

    assert key == target_key("https://contoso.sharepoint.com/sites/records")
    assert re.fullmatch(r"[a-z0-9-]+", key)
    assert key.startswith("contoso-sharepoint-com-sites-records-")
    assert key != target_key("https://contoso.sharepoint.com/sites/finance")


def test_target_key_requires_an_address():
    with pytest.raises(ValueError):
        target_key("   ")


def test_load_returns_none_for_unknown_site(tmp_path):
    store = RunStateStore(tmp_path)
    assert store.load(target_key("https://contoso.sharepoint.com/sites/new")) is None


def test_save_then_load_keeps_timestamps(tmp_path, now):
    store = RunStateStore(tmp_path)
    key = target_key("https://contoso.sharepoint.com/sites/records")
    state = RunState(
        site_url="https://contoso.sharepoint.com/sites/records",
        last_run=now,
        last_dry_run=now - timedelta(days=1),
        last_policy_change=None,
    )

    path = store.save(key, state)

    assert store.load(key) == state
    payload = json.loads(path.read_text(encoding="utf-8"))
    assert set(payload) == {"siteUrl", "lastRunTimestamp", "lastDryRunTimestamp", "lastPolicyChangeTimestamp"}
    assert payload["lastPolicyChangeTimestamp"] is None
    assert not path.with_suffix(".json.tmp").exists()


def test_effective_dry_run_forces_dry_run_until_one_is_on_record(now):
    fresh = None
    policy_only = RunState(site_url="s", last_policy_change=now)
    after_dry_run = RunState(site_url="s", last_run=now, last_dry_run=now)

    assert effective_dry_run(fresh, delete_requested=True) is True
    assert effective_dry_run(policy_only, delete_requested=True) is True
    assert effective_dry_run(after_dry_run, delete_requested=True) is False
    assert effective_dry_run(after_dry_run, delete_requested=False) is True
    assert is_first_run(fresh) and not is_first_run(after_dry_run)


def test_invalid_state_file_is_rejected(tmp_path):
    store = RunStateStore(tmp_path)
    key = "broken"
    store.path_for(key).write_text(json.dumps({"siteUrl": "s", "lastRunTimestamp": 5}), encoding="utf-8")

    with pytest.raises(RunStateError, match="invalid"):
        store.load(key)


def test_unreadable_state_file_is_rejected(tmp_path):
    store = RunStateStore(tmp_path)
    store.path_for("garbled").write_text("{not json", encoding="utf-8")

    with pytest.raises(RunStateError, match="unreadable"):
        store.load("garbled")


def test_record_run_carries_policy_change_over(tmp_path, now):
    store = RunStateStore(tmp_path)
    site = "https://contoso.sharepoint.com/sites/records"
    key = target_key(site)
    changed = now - timedelta(hours=3)
    previous = store.record_policy_change(key, site, changed)

    dry = store.record_run(key, site, previous, dry_run=True, now=now)
    later = now + timedelta(days=1)
    real = store.record_run(key, site, dry, dry_run=False, now=later)

    assert dry.last_dry_run == now
    assert real.last_run == later
    assert real.last_dry_run == now
    assert store.load(key).last_policy_change == changed


def test_unparsable_policy_timestamp_is_rejected(tmp_path, now):
    store = RunStateStore(tmp_path)
    key = "corrupt-timestamp"
    payload = RunState(site_url="s", last_run=now, last_dry_run=now).to_payload()
    payload["lastPolicyChangeTimestamp"] = "2026-01-01 12:00 (UTC)"
    store.path_for(key).write_text(json.dumps(payload), encoding="utf-8")

    with pytest.raises(RunStateError, match="invalid"):
        store.load(key)


def test_from_payload_never_drops_a_timestamp(now):
    payload = RunState(site_url="s", last_run=now).to_payload()
    payload["lastRunTimestamp"] = "yesterday"

    with pytest.raises(RunStateError, match="lastRunTimestamp"):
        RunState.from_payload(payload)
