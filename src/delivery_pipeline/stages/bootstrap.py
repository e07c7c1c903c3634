"""One-time grant of cluster privileges to the orchestrator's identity.

On EKS the mapping from IAM roles to Kubernetes users and groups lives in the
``aws-auth`` ConfigMap in ``kube-system``. :class:`AwsAuthBindingStore` reads
and writes its ``mapRoles`` entry; :class:`PermissionBootstrapper` adds any
missing privileges without ever removing existing ones.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import yaml

from delivery_pipeline.cluster.client import ClusterClient
from delivery_pipeline.core.audit import AuditAction, AuditEvent, AuditSink, AuditStatus
from delivery_pipeline.core.errors import AuthError, PipelineError
from delivery_pipeline.core.utils import safe_call

logger = logging.getLogger(__name__)

AWS_AUTH_NAME = "aws-auth"
AWS_AUTH_NAMESPACE = "kube-system"


@dataclass(frozen=True)
class ClusterBinding:
    """An identity mapped to a cluster user and a set of groups."""

    identity: str
    username: str
    privileges: frozenset[str]

    def grants(self, required: Iterable[str]) -> bool:
        return set(required) <= self.privileges

    def to_map_role(self) -> dict[str, Any]:
        return {"rolearn": self.identity, "username": self.username, "groups": sorted(self.privileges)}

    @classmethod
    def from_map_role(cls, entry: Mapping[str, Any]) -> ClusterBinding:
        return cls(
            identity=str(entry.get("rolearn", "")),
            username=str(entry.get("username", "")),
            privileges=frozenset(str(g) for g in entry.get("groups") or []),
        )


class BindingStore(Protocol):
    """Persistent set of cluster bindings."""

    def list_bindings(self) -> list[ClusterBinding]: ...

    def put_binding(self, binding: ClusterBinding) -> None:
        """Insert or replace the binding for ``binding.identity``."""
        ...


class AwsAuthBindingStore:
    """Bindings kept in the ``mapRoles`` key of the ``aws-auth`` ConfigMap.

    Entries for other identities and other data keys (``mapUsers``,
    ``mapAccounts``) are preserved on every write.
    """

    def __init__(self, cluster: ClusterClient) -> None:
        self._cluster = cluster

    def _read(self) -> tuple[dict[str, Any], list[dict[str, Any]]]:
        configmap = self._cluster.get("configmap", AWS_AUTH_NAME, AWS_AUTH_NAMESPACE)
        data = dict((configmap or {}).get("data") or {})
        try:
            roles = yaml.safe_load(data.get("mapRoles") or "[]") or []
        except yaml.YAMLError as exc:
            raise AuthError(f"{AWS_AUTH_NAME} mapRoles is not valid YAML", cause=exc) from exc
        if not isinstance(roles, list):
            raise AuthError(f"{AWS_AUTH_NAME} mapRoles must be a list")
        return data, roles

    def list_bindings(self) -> list[ClusterBinding]:
        _, roles = self._read()
        return [ClusterBinding.from_map_role(entry) for entry in roles if isinstance(entry, Mapping)]

    def put_binding(self, binding: ClusterBinding) -> None:
        data, roles = self._read()
        kept = [r for r in roles if not (isinstance(r, Mapping) and r.get("rolearn") == binding.identity)]
        kept.append(binding.to_map_role())
        data["mapRoles"] = yaml.safe_dump(kept, default_flow_style=False, sort_keys=False)
        document = {
            "apiVersion": "v1",
            "kind": "ConfigMap",
            "metadata": {"name": AWS_AUTH_NAME, "namespace": AWS_AUTH_NAMESPACE},
            "data": data,
        }
        self._cluster.apply([document], AWS_AUTH_NAMESPACE)


class PermissionBootstrapper:
    """Ensures an identity holds the cluster privileges it needs.

    Args:
        store: Where bindings are read and written.
        audit_sink: Receives a ``binding_asserted`` or ``binding_unchanged``
            event per call (optional).
        actor: Actor recorded on audit events.
    """

    def __init__(
        self,
        store: BindingStore,
        audit_sink: AuditSink | None = None,
        actor: str = "dpo-bootstrap",
    ) -> None:
        self._store = store
        self._audit = audit_sink
        self._actor = actor

    def ensure_binding(
        self,
        identity: str,
        required_privileges: Iterable[str],
        username: str | None = None,
    ) -> ClusterBinding:
        """Grant *required_privileges* to *identity* unless already granted.

        Idempotent: a second call with the same arguments leaves the store
        unchanged. Existing privileges are kept; the result is their union
        with *required_privileges*.

        Raises:
            AuthError: The binding could not be read or written.
        """
        required = frozenset(required_privileges)
        if not identity:
            raise AuthError("Cannot bind an empty identity")
        if not required:
            raise AuthError(f"No privileges requested for {identity}")

        try:
            current = next((b for b in self._store.list_bindings() if b.identity == identity), None)
            if current is not None and current.grants(required) and (username is None or current.username == username):
                logger.info("Binding for %s already grants %s", identity, ", ".join(sorted(required)))
                self._emit(AuditAction.BINDING_UNCHANGED, current)
                return current

            binding = ClusterBinding(
                identity=identity,
                username=username or (current.username if current else identity.rsplit("/", 1)[-1]),
                privileges=required | (current.privileges if current else frozenset()),
            )
            self._store.put_binding(binding)
        except AuthError:
            raise
        except PipelineError as exc:
            raise AuthError(f"Could not update cluster binding for {identity}: {exc}", cause=exc) from exc

        logger.info("Bound %s as %s with %s", identity, binding.username, ", ".join(sorted(binding.privileges)))
        self._emit(AuditAction.BINDING_ASSERTED, binding)
        return binding

    def _emit(self, action: AuditAction, binding: ClusterBinding) -> None:
        if self._audit is None:
            return
        event = AuditEvent(
            action=action,
            actor=self._actor,
            resource=binding.identity,
            status=AuditStatus.SUCCESS,
            metadata={"username": binding.username, "privileges": ",".join(sorted(binding.privileges))},
        )
        safe_call(lambda: self._audit.emit(event), logger, "Audit sink failed for %s", binding.identity)
