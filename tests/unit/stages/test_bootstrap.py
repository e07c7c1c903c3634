"""Tests for the permission bootstrapper."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
import yaml

from delivery_pipeline.core.audit import AuditAction, AuditSink
from delivery_pipeline.core.errors import AuthError, CollaboratorUnavailable
from delivery_pipeline.stages.bootstrap import (
    AWS_AUTH_NAME,
    AWS_AUTH_NAMESPACE,
    AwsAuthBindingStore,
    ClusterBinding,
    PermissionBootstrapper,
)
from tests.factories import FakeCluster

ROLE = "arn:aws:iam::123456789012:role/delivery-pipeline"


class InMemoryBindingStore:
    def __init__(self, *bindings: ClusterBinding) -> None:
        self.bindings = {b.identity: b for b in bindings}
        self.writes = 0

    def list_bindings(self) -> list[ClusterBinding]:
        return list(self.bindings.values())

    def put_binding(self, binding: ClusterBinding) -> None:
        self.writes += 1
        self.bindings[binding.identity] = binding


def _aws_auth(cluster: FakeCluster) -> dict:
    doc = cluster.get("configmap", AWS_AUTH_NAME, AWS_AUTH_NAMESPACE)
    assert doc is not None
    return doc


# ---------------------------------------------------------------------------
# ClusterBinding
# ---------------------------------------------------------------------------


class TestClusterBinding:
    def test_map_role(self) -> None:
        binding = ClusterBinding(ROLE, "dpo", frozenset({"system:masters", "deployers"}))

        assert binding.to_map_role() == {
            "rolearn": ROLE,
            "username": "dpo",
            "groups": ["deployers", "system:masters"],
        }
        assert ClusterBinding.from_map_role(binding.to_map_role()) == binding

    def test_grants_subset(self) -> None:
        binding = ClusterBinding(ROLE, "dpo", frozenset({"a", "b"}))

        assert binding.grants(["a"])
        assert not binding.grants(["a", "c"])


# ---------------------------------------------------------------------------
# PermissionBootstrapper
# ---------------------------------------------------------------------------


class TestEnsureBinding:
    def test_creates_binding(self) -> None:
        store = InMemoryBindingStore()

        binding = PermissionBootstrapper(store).ensure_binding(ROLE, ["system:masters"])

        assert binding.privileges == frozenset({"system:masters"})
        assert binding.username == "delivery-pipeline"
        assert store.writes == 1

    def test_idempotent(self) -> None:
        store = InMemoryBindingStore()
        bootstrapper = PermissionBootstrapper(store)

        first = bootstrapper.ensure_binding(ROLE, ["system:masters"], username="dpo")
        second = bootstrapper.ensure_binding(ROLE, ["system:masters"], username="dpo")

        assert first == second
        assert store.writes == 1

    def test_keeps_existing_privileges(self) -> None:
        store = InMemoryBindingStore(ClusterBinding(ROLE, "dpo", frozenset({"viewers"})))

        binding = PermissionBootstrapper(store).ensure_binding(ROLE, ["deployers"])

        assert binding.privileges == frozenset({"viewers", "deployers"})
        assert binding.username == "dpo"

    def test_other_identities_untouched(self) -> None:
        other = ClusterBinding("arn:aws:iam::1:role/other", "other", frozenset({"x"}))
        store = InMemoryBindingStore(other)

        PermissionBootstrapper(store).ensure_binding(ROLE, ["system:masters"])

        assert store.bindings[other.identity] == other

    @pytest.mark.parametrize(("identity", "privileges"), [("", ["a"]), (ROLE, [])])
    def test_rejects_empty_input(self, identity: str, privileges: list[str]) -> None:
        with pytest.raises(AuthError):
            PermissionBootstrapper(InMemoryBindingStore()).ensure_binding(identity, privileges)

    def test_store_failure_becomes_auth_error(self) -> None:
        store = MagicMock()
        store.list_bindings.side_effect = CollaboratorUnavailable("kubectl", "cluster API unreachable")

        with pytest.raises(AuthError, match="Could not update"):
            PermissionBootstrapper(store).ensure_binding(ROLE, ["system:masters"])

    def test_audit_events(self) -> None:
        sink = MagicMock(spec=AuditSink)
        bootstrapper = PermissionBootstrapper(InMemoryBindingStore(), audit_sink=sink, actor="ops")

        bootstrapper.ensure_binding(ROLE, ["system:masters"])
        bootstrapper.ensure_binding(ROLE, ["system:masters"])

        actions = [call.args[0].action for call in sink.emit.call_args_list]
        assert actions == [AuditAction.BINDING_ASSERTED, AuditAction.BINDING_UNCHANGED]
        assert sink.emit.call_args_list[0].args[0].actor == "ops"

    def test_failing_audit_sink_ignored(self) -> None:
        sink = MagicMock(spec=AuditSink)
        sink.emit.side_effect = RuntimeError("disk full")

        binding = PermissionBootstrapper(InMemoryBindingStore(), audit_sink=sink).ensure_binding(ROLE, ["a"])

        assert binding.grants(["a"])


# ---------------------------------------------------------------------------
# AwsAuthBindingStore
# ---------------------------------------------------------------------------


class TestAwsAuthBindingStore:
    def test_empty_cluster(self) -> None:
        assert AwsAuthBindingStore(FakeCluster()).list_bindings() == []

    def test_preserves_other_entries_and_keys(self) -> None:
        cluster = FakeCluster()
        node_role = {"rolearn": "arn:aws:iam::1:role/nodes", "username": "system:node:{{EC2PrivateDNSName}}"}
        cluster.apply(
            [
                {
                    "apiVersion": "v1",
                    "kind": "ConfigMap",
                    "metadata": {"name": AWS_AUTH_NAME, "namespace": AWS_AUTH_NAMESPACE},
                    "data": {"mapRoles": yaml.safe_dump([node_role]), "mapUsers": "[]\n"},
                }
            ],
            AWS_AUTH_NAMESPACE,
        )

        PermissionBootstrapper(AwsAuthBindingStore(cluster)).ensure_binding(ROLE, ["system:masters"], username="dpo")

        data = _aws_auth(cluster)["data"]
        roles = yaml.safe_load(data["mapRoles"])
        assert roles[0] == node_role
        assert roles[1] == {"rolearn": ROLE, "username": "dpo", "groups": ["system:masters"]}
        assert data["mapUsers"] == "[]\n"

    def test_second_run_does_not_apply(self) -> None:
        cluster = FakeCluster()
        bootstrapper = PermissionBootstrapper(AwsAuthBindingStore(cluster))

        bootstrapper.ensure_binding(ROLE, ["system:masters"])
        bootstrapper.ensure_binding(ROLE, ["system:masters"])

        assert len(cluster.applies) == 1

    def test_invalid_map_roles(self) -> None:
        cluster = FakeCluster()
        cluster.objects[("ConfigMap", AWS_AUTH_NAMESPACE, AWS_AUTH_NAME)] = {"data": {"mapRoles": "rolearn: x"}}

        with pytest.raises(AuthError, match="must be a list"):
            AwsAuthBindingStore(cluster).list_bindings()
