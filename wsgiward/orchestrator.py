"""
Reconcile orchestration: declared applications -> registry of descriptors.

A reconcile validates the whole batch, writes every secret to a temporary copy
and builds every descriptor before it replaces any staged copy or swaps the
registry. Any failure up to that point leaves the staged copies and the
previous registry untouched. The orchestrator never stops or starts anything; it
reports which applications disappeared so the caller can decommission them.
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .config import Settings
from .descriptor import ServiceDescriptor, build
from .errors import FatalError, StagingError, ValidationError
from .events import EventTypes, emit_event
from .ids import new_reconcile_id
from .network import resolve
from .registry import EMPTY, Registry
from .secrets import PreparedSecret, SecretStager, StagedSecret
from .secrets.envfile import DJANGO_REQUIRED_KEYS, missing_keys
from .spec import ApplicationSpec, validate_batch
from .state import read_registry_snapshot, write_registry_snapshot

logger = logging.getLogger(__name__)

MAX_STAGING_WORKERS = 8


@dataclass(frozen=True)
class ReconcileWarning:
    application: str
    message: str

    def __str__(self) -> str:
        return f"{self.application}: {self.message}"


@dataclass(frozen=True)
class ReconcileResult:
    reconcile_id: str
    registry: Registry
    removed: Tuple[ServiceDescriptor, ...]
    warnings: Tuple[ReconcileWarning, ...]

    @property
    def removed_names(self) -> List[str]:
        return [d.name for d in self.removed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reconcile_id": self.reconcile_id,
            "applications": sorted(self.registry.names()),
            "removed": self.removed_names,
            "warnings": [str(w) for w in self.warnings],
        }


class Orchestrator:
    """Owns the current Registry and serializes reconciles."""

    def __init__(self, settings: Optional[Settings] = None, stager: Optional[SecretStager] = None,
                 registry: Optional[Registry] = None, home: Optional[Path] = None,
                 pending: Iterable[ServiceDescriptor] = ()):
        self.settings = settings or Settings()
        self.stager = stager or SecretStager(self.settings.runtime_dir)
        self.home = home
        self._registry = registry or EMPTY
        # Removed applications whose staged secrets still exist
        self._pending: Dict[str, ServiceDescriptor] = {d.name: d for d in pending}
        self._lock = threading.Lock()

    @classmethod
    def from_state(cls, settings: Settings, stager: Optional[SecretStager] = None) -> "Orchestrator":
        """Orchestrator seeded with the last persisted registry, events and snapshots enabled."""
        home = settings.home_path
        snapshot = read_registry_snapshot(home) or {}
        registry = Registry.from_snapshot(snapshot)
        pending = [ServiceDescriptor.from_dict(item) for item in snapshot.get("removed", [])]
        return cls(settings=settings, stager=stager, registry=registry, home=home, pending=pending)

    @property
    def registry(self) -> Registry:
        return self._registry

    def pending_removal(self) -> List[ServiceDescriptor]:
        """Removed applications not yet decommissioned."""
        return [self._pending[name] for name in sorted(self._pending)]

    def reconcile(self, raw_specs: Iterable[Any]) -> ReconcileResult:
        """
        Bring the registry to the declared state. All or nothing.

        Args:
            raw_specs: Declared records, or (default_name, record) pairs

        Returns:
            ReconcileResult with the new registry, removed applications and warnings

        Raises:
            ValidationError: Declared input is invalid; nothing changed
            StagingError: A secret could not be staged; no staged copy or
                registry entry changed
            FatalError: A descriptor could not be built; nothing changed
        """
        with self._lock:
            reconcile_id = new_reconcile_id()
            try:
                return self._reconcile(reconcile_id, list(raw_specs))
            except (FatalError, OSError) as e:
                logger.exception(f"Reconcile {reconcile_id} crashed: {e}")
                self._emit(reconcile_id, EventTypes.ERROR, {"error": type(e).__name__, "reason": str(e)})
                raise

    def _reconcile(self, reconcile_id: str, raws: List[Any]) -> ReconcileResult:
        self._emit(reconcile_id, EventTypes.RECONCILE_START, {"declared": len(raws)})

        try:
            specs = validate_batch(raws, runtime_dir=self.settings.runtime_dir)
        except ValidationError as e:
            logger.error(f"Reconcile {reconcile_id} rejected: {e}")
            self._emit(reconcile_id, EventTypes.SPEC_INVALID, {
                "application": e.application, "field": e.field, "reason": e.message,
            })
            raise
        self._emit(reconcile_id, EventTypes.SPEC_VALID, {"applications": [s.name for s in specs]})

        prepared = self._prepare_all(reconcile_id, specs)
        try:
            descriptors = [
                build(spec, prepared[spec.name].secret, resolve(spec), self.settings) for spec in specs
            ]
            new_registry = Registry(descriptors)
        except BaseException:
            self._discard_all(prepared)
            raise
        secrets = self._commit_all(reconcile_id, specs, prepared)
        warnings = self._collect_warnings(specs, secrets)

        removed = tuple(new_registry.removed_since(self._registry))
        pending = {name: d for name, d in self._pending.items() if name not in new_registry}
        pending.update((d.name, d) for d in removed)
        self._persist(new_registry, pending)
        self._registry = new_registry
        self._pending = pending

        self._emit(reconcile_id, EventTypes.REGISTRY_SWAPPED, {
            "applications": sorted(new_registry.names()),
            "warnings": [str(w) for w in warnings],
        })
        for descriptor in removed:
            logger.info(f"Application {descriptor.name} is no longer declared")
            self._emit(reconcile_id, EventTypes.APP_REMOVED, {"application": descriptor.name})

        logger.info(f"Reconcile {reconcile_id} committed {len(new_registry)} application(s)")
        return ReconcileResult(
            reconcile_id=reconcile_id,
            registry=new_registry,
            removed=removed,
            warnings=tuple(warnings),
        )

    def decommission(self, name: str) -> bool:
        """
        Destroy the staged secret of an application that is no longer declared.

        Call only after the supervisor stopped the application.

        Returns:
            True if a staged secrets file was removed

        Raises:
            ValueError: If the application is still declared or was never removed
        """
        with self._lock:
            if name in self._registry:
                raise ValueError(f"{name} is still declared; remove it and reconcile first")
            descriptor = self._pending.get(name)
            if descriptor is None:
                raise ValueError(f"{name} is not pending removal")
            # Another application may have claimed the user since
            if any(d.user == descriptor.user for d in self._registry.descriptors()):
                removed = False
            else:
                removed = self.stager.destroy(descriptor.user)
            pending = {n: d for n, d in self._pending.items() if n != name}
            self._persist(self._registry, pending)
            self._pending = pending
            self._emit(new_reconcile_id(), EventTypes.DECOMMISSIONED, {
                "application": name, "user": descriptor.user, "removed": removed,
            })
            return removed

    def _persist(self, registry: Registry, pending: Dict[str, ServiceDescriptor]) -> None:
        if self.home is None:
            return
        snapshot = registry.to_snapshot()
        snapshot["removed"] = [pending[name].to_dict() for name in sorted(pending)]
        write_registry_snapshot(snapshot, self.home)

    def _prepare_all(self, reconcile_id: str, specs: List[ApplicationSpec]) -> Dict[str, PreparedSecret]:
        """Write every new copy in parallel; replace nothing. All or nothing."""
        # Users are unique per batch, so every task touches its own directory
        workers = max(1, min(MAX_STAGING_WORKERS, len(specs)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="wsgiward-stage") as pool:
            futures = [(spec, pool.submit(self.stager.prepare, spec.user, spec.secrets_file)) for spec in specs]

        prepared: Dict[str, PreparedSecret] = {}
        failure: Optional[BaseException] = None
        for spec, future in futures:
            try:
                prepared[spec.name] = future.result()
            except StagingError as e:
                logger.error(f"Staging failed for {spec.name}: {e}")
                self._emit(reconcile_id, EventTypes.STAGING_FAILED, {
                    "application": spec.name, "path": e.path, "reason": e.message,
                })
                failure = failure or e
            except Exception as e:
                failure = failure or e
        if failure is not None:
            self._discard_all(prepared)
            raise failure
        return prepared

    def _discard_all(self, prepared: Dict[str, PreparedSecret]) -> None:
        for item in prepared.values():
            self.stager.discard(item)

    def _commit_all(self, reconcile_id: str, specs: List[ApplicationSpec],
                    prepared: Dict[str, PreparedSecret]) -> Dict[str, StagedSecret]:
        staged: Dict[str, StagedSecret] = {}
        for index, spec in enumerate(specs):
            try:
                secret = self.stager.commit(prepared[spec.name])
            except StagingError as e:
                logger.error(f"Commit failed for {spec.name}: {e}")
                self._emit(reconcile_id, EventTypes.STAGING_FAILED, {
                    "application": spec.name, "path": e.path, "reason": e.message,
                })
                self._discard_all({s.name: prepared[s.name] for s in specs[index + 1:]})
                raise
            staged[spec.name] = secret
            event = EventTypes.SECRET_STAGED if secret.changed else EventTypes.SECRET_UNCHANGED
            self._emit(reconcile_id, event, {
                "application": spec.name, "location": secret.location, "sha256": secret.source_checksum[:12],
            })
        return staged

    def _collect_warnings(self, specs: List[ApplicationSpec],
                          secrets: Dict[str, StagedSecret]) -> List[ReconcileWarning]:
        warnings: List[ReconcileWarning] = []
        for spec in specs:
            if spec.is_django:
                with open(secrets[spec.name].location, "r", encoding="utf-8", errors="ignore") as f:
                    missing = missing_keys(f.read(), DJANGO_REQUIRED_KEYS)
                if missing:
                    warnings.append(ReconcileWarning(spec.name, f"secrets file does not define {', '.join(missing)}"))
            if spec.static_files and not os.path.isdir(spec.static_files):
                warnings.append(ReconcileWarning(spec.name, f"static files directory {spec.static_files} does not exist"))
            if spec.expose_via_proxy:
                if spec.host_name not in spec.allowed_hosts:
                    warnings.append(ReconcileWarning(spec.name, f"host name {spec.host_name} is not in allowedHosts"))
                private_dir = self.stager.user_dir(spec.user).as_posix() + "/"
                if not spec.binding.is_tcp and spec.binding.socket.startswith(private_dir):
                    warnings.append(ReconcileWarning(
                        spec.name, "socket lives in the private runtime directory; the proxy cannot reach it"))
        for w in warnings:
            logger.warning(str(w))
        return warnings

    def _emit(self, reconcile_id: str, event_type: str, data: Dict[str, Any]) -> None:
        if self.home is not None:
            emit_event(reconcile_id, event_type, data, self.home)
