"""
Reconcile Adapter: create-or-update, read and delete of one resource kind.

Each call is one request/response cycle against the backend under a
deadline. Nothing is kept between calls except what the backend persists;
the caller persists only ``str(identity)``.
"""
from __future__ import annotations

from typing import Any, Generic, Optional, TypeVar, Union

import structlog
from pydantic import ValidationError

from provisioner.modules.reconcile.domain.backend import ResourceBackend
from provisioner.modules.reconcile.domain.factory import ResourceKind
from provisioner.modules.reconcile.domain.identity import ResourceIdentity
from provisioner.modules.reconcile.domain.schema import PropertyRecord
from provisioner.shared.core.exceptions import (
    AlreadyExistsError,
    BackendError,
    BackendNotFoundError,
    MalformedIdentityError,
    TypeMismatchError,
)
from provisioner.shared.core.timeout import TimeoutManager

logger = structlog.get_logger()

R = TypeVar("R", bound=PropertyRecord)


class _Absent:
    """Read result for an identity with no live counterpart in the backend."""

    _instance: Optional["_Absent"] = None

    def __new__(cls) -> "_Absent":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


class ReconcileAdapter(Generic[R]):
    def __init__(self, kind: ResourceKind, backend: ResourceBackend):
        self.kind = kind
        self.backend = backend

    def resolve(self, config: R) -> ResourceIdentity:
        return self.kind.resolver.resolve_for_write(config, self.backend.subscription_id)

    def parse(self, handle: Union[str, ResourceIdentity]) -> ResourceIdentity:
        if isinstance(handle, ResourceIdentity):
            return handle
        return self.kind.resolver.parse(handle)

    def _describe(self, verb: str, identity: ResourceIdentity, exc: BaseException) -> str:
        return (
            f"{verb} {identity.KIND} {identity.name!r} "
            f"({identity.PARENT.KIND} {identity.parent_name!r} / Resource Group {identity.resource_group!r}): {exc}"
        )

    async def apply(
        self, config: R, *, new_resource: bool = False, timeout: Optional[float] = None
    ) -> str:
        """Resolve the identity for `config`, reconcile it and return the handle to persist."""
        identity = self.resolve(config)
        await self.create_or_update(identity, config, new_resource=new_resource, timeout=timeout)
        return str(identity)

    async def create_or_update(
        self,
        identity: ResourceIdentity,
        config: R,
        *,
        new_resource: bool = False,
        timeout: Optional[float] = None,
    ) -> ResourceIdentity:
        operation = "create" if new_resource else "update"
        with structlog.contextvars.bound_contextvars(
            resource_kind=self.kind.type_name, resource_id=str(identity)
        ):
            logger.info(f"reconcile_{operation}_started", fields=config.loggable())
            await TimeoutManager(operation, timeout).execute_with_timeout(
                self._create_or_update,
                identity,
                config,
                new_resource,
                details=identity.describe(),
            )
            logger.info(f"reconcile_{operation}_completed")
        return identity

    async def _create_or_update(
        self, identity: ResourceIdentity, config: R, new_resource: bool
    ) -> None:
        if new_resource:
            # Best effort: another writer may create the object between probe and write.
            try:
                existing = await self.backend.get(identity)
            except BackendNotFoundError:
                existing = None
            except Exception as exc:
                raise BackendError(
                    self._describe("checking for presence of existing", identity, exc),
                    cause=exc,
                    details=identity.describe(),
                ) from exc
            if existing is not None:
                logger.warning("reconcile_create_import_collision")
                raise AlreadyExistsError(
                    existing.id or str(identity), self.kind.type_name, details=identity.describe()
                )

        obj = self.kind.mapper.expand(config)
        try:
            await self.backend.create_or_update(identity, obj)
        except TypeMismatchError:
            logger.warning("reconcile_write_kind_mismatch")
            raise
        except Exception as exc:
            logger.error("reconcile_write_failed", error=str(exc), error_type=type(exc).__name__)
            raise BackendError(
                self._describe("creating/updating", identity, exc),
                cause=exc,
                details=identity.describe(),
            ) from exc

    async def read(
        self,
        identity: Union[str, ResourceIdentity],
        *,
        prior: Optional[R] = None,
        timeout: Optional[float] = None,
    ) -> Union[R, _Absent]:
        """
        Fetch the live object and flatten it.

        Returns ABSENT when the backend has no such object; the caller should
        then forget its handle. `prior` supplies sensitive values the backend
        does not return in plaintext.
        """
        resolved = self.parse(identity)
        with structlog.contextvars.bound_contextvars(
            resource_kind=self.kind.type_name, resource_id=str(resolved)
        ):
            return await TimeoutManager("read", timeout).execute_with_timeout(
                self._read, resolved, prior, details=resolved.describe()
            )

    async def _read(self, identity: ResourceIdentity, prior: Optional[R]) -> Union[R, _Absent]:
        try:
            obj = await self.backend.get(identity)
        except BackendNotFoundError:
            logger.info("reconcile_read_absent")
            return ABSENT
        except Exception as exc:
            raise BackendError(
                self._describe("retrieving", identity, exc),
                cause=exc,
                details=identity.describe(),
            ) from exc

        self._check_backend_id(identity, obj.id)
        try:
            record: Any = self.kind.mapper.flatten(obj)
        except ValidationError as exc:
            raise BackendError(
                self._describe("flattening", identity, exc),
                cause=exc,
                details=identity.describe(),
            ) from exc
        record = record.model_copy(update=self.kind.resolver.identity_fields(identity))
        if prior is not None:
            record = self._carry_forward_sensitive(record, prior)
        return record

    def _check_backend_id(self, identity: ResourceIdentity, backend_id: Optional[str]) -> None:
        if not backend_id:
            return
        try:
            reported = self.kind.resolver.parse(backend_id)
        except MalformedIdentityError:
            logger.debug("reconcile_backend_id_unparsed", backend_id=backend_id)
            return
        if not identity.same_resource(reported):
            logger.warning("reconcile_backend_id_mismatch", backend_id=backend_id)

    @staticmethod
    def _carry_forward_sensitive(record: R, prior: R) -> R:
        updates: dict[str, Any] = {}
        for name in record.sensitive_field_names():
            prior_value = getattr(prior, name)
            if prior_value is None:
                continue
            current = getattr(record, name)
            # Missing or masked in the response: keep what the user configured.
            if current is None or record.field_equal(name, prior_value, current):
                updates[name] = prior_value
        return record.model_copy(update=updates) if updates else record

    async def delete(
        self, identity: Union[str, ResourceIdentity], *, timeout: Optional[float] = None
    ) -> None:
        resolved = self.parse(identity)
        with structlog.contextvars.bound_contextvars(
            resource_kind=self.kind.type_name, resource_id=str(resolved)
        ):
            logger.info("reconcile_delete_started")
            await TimeoutManager("delete", timeout).execute_with_timeout(
                self._delete, resolved, details=resolved.describe()
            )
            logger.info("reconcile_delete_completed")

    async def _delete(self, identity: ResourceIdentity) -> None:
        try:
            await self.backend.delete(identity)
        except BackendNotFoundError:
            logger.info("reconcile_delete_already_absent")
        except Exception as exc:
            raise BackendError(
                self._describe("deleting", identity, exc),
                cause=exc,
                details=identity.describe(),
            ) from exc
