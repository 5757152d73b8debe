"""Unit tests for the in-memory and file-backed policy stores."""

from __future__ import annotations

import os
import threading
from pathlib import Path

import pytest

from netguard.core.exceptions import (
    PolicyNotFoundError,
    PolicyStoreError,
    StoreUnavailableError,
)
from netguard.core.policy.model import Policy, PolicyAction
from netguard.core.policy.store import (
    FilePolicyStore,
    InMemoryPolicyStore,
    PolicyStore,
    ScopeHint,
    rank_key,
)


def _payload(**overrides: object) -> dict[str, object]:
    data: dict[str, object] = {
        "name": "VPN access",
        "subject": "admin_group",
        "object": "internal_network",
        "conditions": {"ip_range": "192.168.1.0/24"},
        "action": "allow",
        "priority": 10,
    }
    data.update(overrides)
    return data


_POLICY_YAML = """\
policy_version: "1"
name: file-store
policies:
  - id: 1
    name: low
    subject: all_users
    object: internal_network
    action: allow
    priority: 1
  - id: 2
    name: high
    subject: all_users
    object: internal_network
    action: deny
    priority: 9
  - id: 3
    name: off
    subject: all_users
    object: internal_network
    action: isolate
    priority: 99
    enabled: false
"""


# ---------------------------------------------------------------------------
# In-memory store
# ---------------------------------------------------------------------------


class TestInMemoryCreate:
    def test_assigns_ids(self) -> None:
        store = InMemoryPolicyStore()
        first = store.create(_payload())
        second = store.create(_payload(name="second"))
        assert (first.id, second.id) == (1, 2)
        assert first.version == 1

    def test_ignores_supplied_id_and_version(self) -> None:
        store = InMemoryPolicyStore()
        policy = store.create(_payload(id=99, version=7))
        assert policy.id == 1
        assert policy.version == 1

    def test_continues_after_seeded_ids(self) -> None:
        seed = Policy(id=40, name="seed", subject="*", object="*", action="deny")
        store = InMemoryPolicyStore([seed])
        assert store.create(_payload()).id == 41

    def test_validation_error(self) -> None:
        store = InMemoryPolicyStore()
        with pytest.raises(PolicyStoreError, match="Invalid policy"):
            store.create(_payload(action="explode"))
        assert len(store) == 0

    def test_duplicate_seed_ids(self) -> None:
        p = Policy(id=1, name="a", subject="*", object="*", action="deny")
        with pytest.raises(PolicyStoreError, match="Duplicate"):
            InMemoryPolicyStore([p, p])


class TestInMemoryReads:
    def test_get_missing(self) -> None:
        with pytest.raises(PolicyNotFoundError, match="Policy 5 not found"):
            InMemoryPolicyStore().get(5)

    def test_not_found_is_key_error(self) -> None:
        with pytest.raises(KeyError):
            InMemoryPolicyStore().get(5)

    def test_list_all_ranked(self) -> None:
        store = InMemoryPolicyStore()
        store.create(_payload(name="a", priority=1))
        store.create(_payload(name="b", priority=5))
        store.create(_payload(name="c", priority=5, enabled=False))
        assert [p.name for p in store.list_all()] == ["b", "c", "a"]

    def test_enabled_only(self) -> None:
        store = InMemoryPolicyStore()
        store.create(_payload(name="on"))
        store.create(_payload(name="off", enabled=False))
        assert [p.name for p in store.get_enabled_policies()] == ["on"]

    def test_scope_hint_is_accepted(self) -> None:
        store = InMemoryPolicyStore()
        store.create(_payload())
        hint = ScopeHint(object_id="other", principal_id="bob")
        assert len(store.get_enabled_policies(hint)) == 1

    def test_satisfies_protocol(self) -> None:
        assert isinstance(InMemoryPolicyStore(), PolicyStore)
        assert isinstance(FilePolicyStore("/nonexistent.yaml"), PolicyStore)


class TestInMemoryUpdate:
    def test_partial_update_bumps_version(self) -> None:
        store = InMemoryPolicyStore()
        created = store.create(_payload())
        updated = store.update(created.id, {"priority": 50, "action": "deny"})
        assert updated.version == 2
        assert updated.priority == 50
        assert updated.action is PolicyAction.DENY
        assert updated.subject == created.subject
        assert store.get(created.id) == updated

    def test_old_record_is_unchanged(self) -> None:
        store = InMemoryPolicyStore()
        created = store.create(_payload())
        store.update(created.id, {"priority": 50})
        assert created.priority == 10
        assert created.version == 1

    @pytest.mark.parametrize("field", ["id", "version"])
    def test_immutable_fields(self, field: str) -> None:
        store = InMemoryPolicyStore()
        created = store.create(_payload())
        with pytest.raises(PolicyStoreError, match="immutable"):
            store.update(created.id, {field: 9})

    def test_invalid_update_keeps_old_record(self) -> None:
        store = InMemoryPolicyStore()
        created = store.create(_payload())
        with pytest.raises(PolicyStoreError):
            store.update(created.id, {"subject": "   "})
        assert store.get(created.id) == created

    def test_update_missing(self) -> None:
        with pytest.raises(PolicyNotFoundError):
            InMemoryPolicyStore().update(3, {"priority": 1})

    def test_set_enabled(self) -> None:
        store = InMemoryPolicyStore()
        created = store.create(_payload())
        disabled = store.set_enabled(created.id, False)
        assert disabled.enabled is False
        assert disabled.version == 2
        assert store.get_enabled_policies() == []


class TestInMemoryDelete:
    def test_delete(self) -> None:
        store = InMemoryPolicyStore()
        created = store.create(_payload())
        store.delete(created.id)
        assert len(store) == 0
        with pytest.raises(PolicyNotFoundError):
            store.get(created.id)

    def test_delete_missing(self) -> None:
        with pytest.raises(PolicyNotFoundError):
            InMemoryPolicyStore().delete(1)

    def test_ids_not_reused(self) -> None:
        store = InMemoryPolicyStore()
        first = store.create(_payload())
        store.delete(first.id)
        assert store.create(_payload()).id == 2


class TestInMemoryConcurrency:
    def test_readers_see_whole_records(self) -> None:
        store = InMemoryPolicyStore()
        created = store.create(_payload(priority=0, description="v0"))
        stop = threading.Event()
        torn: list[Policy] = []

        def writer() -> None:
            for i in range(1, 200):
                store.update(created.id, {"priority": i, "description": f"v{i}"})
            stop.set()

        def reader() -> None:
            while not stop.is_set():
                for p in store.get_enabled_policies():
                    if p.description != f"v{p.priority}":
                        torn.append(p)

        threads = [threading.Thread(target=writer), threading.Thread(target=reader)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        assert torn == []
        assert store.get(created.id).version == 200


# ---------------------------------------------------------------------------
# File store
# ---------------------------------------------------------------------------


class TestFilePolicyStore:
    def test_enabled_ranked(self, tmp_path: Path) -> None:
        path = tmp_path / "policies.yaml"
        path.write_text(_POLICY_YAML)
        store = FilePolicyStore(path)
        assert [p.id for p in store.get_enabled_policies()] == [2, 1]

    def test_missing_file(self, tmp_path: Path) -> None:
        store = FilePolicyStore(tmp_path / "absent.yaml")
        with pytest.raises(StoreUnavailableError):
            store.get_enabled_policies()

    def test_invalid_file(self, tmp_path: Path) -> None:
        path = tmp_path / "policies.yaml"
        path.write_text("policy_version: '9'\n")
        with pytest.raises(StoreUnavailableError, match="policy_version"):
            FilePolicyStore(path).get_enabled_policies()

    def test_not_utf8_is_unavailable(self, tmp_path: Path) -> None:
        path = tmp_path / "policies.yaml"
        path.write_bytes(_POLICY_YAML.encode("utf-8") + b"# \xff\xfe\n")
        with pytest.raises(StoreUnavailableError, match="Cannot read policy file"):
            FilePolicyStore(path).policy_set()

    def test_yes_no_names_are_strings(self, tmp_path: Path) -> None:
        path = tmp_path / "policies.yaml"
        path.write_text(_POLICY_YAML)
        names = {p.id: p.name for p in FilePolicyStore(path).policy_set().policies}
        assert names[3] == "off"

    def test_reloads_on_change(self, tmp_path: Path) -> None:
        path = tmp_path / "policies.yaml"
        path.write_text(_POLICY_YAML)
        store = FilePolicyStore(path)
        first_hash = store.policy_set().content_hash()

        path.write_text(_POLICY_YAML.replace("priority: 9", "priority: 0"))
        st = path.stat()
        os.utime(path, ns=(st.st_atime_ns, st.st_mtime_ns + 1_000_000_000))

        assert store.policy_set().content_hash() != first_hash
        assert [p.id for p in store.get_enabled_policies()] == [1, 2]

    def test_cached_when_unchanged(self, tmp_path: Path) -> None:
        path = tmp_path / "policies.yaml"
        path.write_text(_POLICY_YAML)
        store = FilePolicyStore(path)
        assert store.policy_set() is store.policy_set()


def test_rank_key_orders_priority_then_id() -> None:
    policies = [
        Policy(id=i, name=str(i), subject="*", object="*", action="deny", priority=p)
        for i, p in [(5, 1), (2, 1), (9, 3), (1, 0)]
    ]
    assert [p.id for p in sorted(policies, key=rank_key)] == [9, 2, 5, 1]
