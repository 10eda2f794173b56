from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Type

from provisioner.modules.reconcile.domain.identity import IdentityResolver
from provisioner.modules.reconcile.domain.mapper import PropertyMapper
from provisioner.modules.reconcile.domain.schema import PropertyRecord


@dataclass(frozen=True)
class ResourceKind:
    """Everything the reconciler needs to know about one resource type."""

    type_name: str
    display_name: str
    record_type: Type[PropertyRecord]
    resolver: IdentityResolver
    mapper: PropertyMapper


def _qualname(kind: ResourceKind) -> str:
    return f"{kind.record_type.__module__}.{kind.record_type.__qualname__}"


class ResourceKindRegistry:
    """
    Registry of resource kinds keyed by their type name
    (e.g. ``azurerm_iothub_endpoint_storage_container``).
    """

    _registry: Dict[str, ResourceKind] = {}

    @classmethod
    def register(cls, kind: ResourceKind) -> ResourceKind:
        existing = cls._registry.get(kind.type_name)
        # Allow idempotent module reload registration, but reject conflicting overrides.
        if existing is not None and _qualname(existing) != _qualname(kind):
            raise ValueError(f"Duplicate resource kind registration for {kind.type_name}")
        cls._registry[kind.type_name] = kind
        return kind

    @classmethod
    def get(cls, type_name: str) -> ResourceKind:
        key = str(type_name or "").strip().lower()
        kind = cls._registry.get(key)
        if kind is None:
            available = ", ".join(sorted(cls._registry)) or "none"
            raise ValueError(f"No resource kind registered for {type_name!r}. Available: {available}")
        return kind

    @classmethod
    def type_names(cls) -> list[str]:
        return sorted(cls._registry)
