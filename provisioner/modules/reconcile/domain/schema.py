"""
PropertyRecord: the flat, user-facing configuration of one resource.

Field behaviour that matters for reconciliation is declared on the schema with
``Annotated[..., FieldTraits(...)]`` rather than left to convention:

    connection_string: Annotated[Optional[SecretStr], FieldTraits(sensitive=True)] = None
    annotations: Annotated[Optional[list[str]], FieldTraits(unordered=True)] = None
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, ClassVar, Mapping, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, SecretStr, ValidationError

from provisioner.shared.core.exceptions import InvalidConfigError
from provisioner.shared.core.logging import REDACTED

R = TypeVar("R", bound="PropertyRecord")


@dataclass(frozen=True)
class FieldTraits:
    identity: bool = False
    sensitive: bool = False
    unordered: bool = False
    equivalent: Optional[Callable[[Any, Any], bool]] = None


_PLAIN = FieldTraits()


def _unwrap(value: Any) -> Any:
    if isinstance(value, SecretStr):
        return value.get_secret_value()
    return value


def _values_equal(traits: FieldTraits, left: Any, right: Any) -> bool:
    left, right = _unwrap(left), _unwrap(right)
    if traits.unordered:
        # Absent and empty collections are the same desired state.
        if isinstance(left, Mapping) or isinstance(right, Mapping):
            return dict(left or {}) == dict(right or {})
        return set(left or []) == set(right or [])
    if traits.equivalent is not None and left is not None and right is not None:
        return traits.equivalent(left, right)
    return left == right


class PropertyRecord(BaseModel):
    """Base class for resource configuration records.

    Records are immutable and replaced wholesale on every reconcile.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    # Groups of fields of which exactly one must be set.
    EXACTLY_ONE_OF: ClassVar[Tuple[Tuple[str, ...], ...]] = ()

    @classmethod
    def traits(cls) -> dict[str, FieldTraits]:
        result: dict[str, FieldTraits] = {}
        for name, info in cls.model_fields.items():
            found = next((m for m in info.metadata if isinstance(m, FieldTraits)), _PLAIN)
            result[name] = found
        return result

    @classmethod
    def identity_field_names(cls) -> frozenset[str]:
        return frozenset(name for name, t in cls.traits().items() if t.identity)

    @classmethod
    def sensitive_field_names(cls) -> frozenset[str]:
        return frozenset(name for name, t in cls.traits().items() if t.sensitive)

    @classmethod
    def from_config(cls: Type[R], data: Mapping[str, Any]) -> R:
        """Build a record from plain user configuration data."""
        try:
            record = cls.model_validate(dict(data))
        except ValidationError as exc:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
            raise InvalidConfigError(
                f"invalid {cls.__name__} configuration: {', '.join(fields)}",
                details={"fields": fields},
            ) from exc
        record.check_exactly_one_of()
        return record

    def check_exactly_one_of(self) -> None:
        for group in self.EXACTLY_ONE_OF:
            present = [name for name in group if getattr(self, name) not in (None, "")]
            if len(present) != 1:
                raise InvalidConfigError(
                    f"exactly one of {', '.join(f'`{n}`' for n in group)} must be specified",
                    details={"fields": list(group), "present": present},
                )

    @classmethod
    def field_equal(cls, name: str, left: Any, right: Any) -> bool:
        return _values_equal(cls.traits()[name], left, right)

    def without_identity(self: R) -> R:
        return self.model_copy(update={name: None for name in self.identity_field_names()})

    def diff(self, other: "PropertyRecord") -> dict[str, Tuple[Any, Any]]:
        """Fields whose values differ, as (self, other) pairs.

        Sensitive values appear as ``[REDACTED]``; order-insensitive fields
        are compared as sets.
        """
        if type(other) is not type(self):
            raise TypeError(f"cannot diff {type(self).__name__} with {type(other).__name__}")
        changes: dict[str, Tuple[Any, Any]] = {}
        for name, traits in self.traits().items():
            left, right = getattr(self, name), getattr(other, name)
            if _values_equal(traits, left, right):
                continue
            if traits.sensitive:
                changes[name] = (
                    REDACTED if left is not None else None,
                    REDACTED if right is not None else None,
                )
            else:
                changes[name] = (left, right)
        return changes

    def equivalent(self, other: "PropertyRecord") -> bool:
        return not self.diff(other)

    def loggable(self) -> dict[str, Any]:
        """Set fields with sensitive values redacted; safe to pass to a logger."""
        sensitive = self.sensitive_field_names()
        return {
            name: (REDACTED if name in sensitive else value)
            for name, value in self.model_dump(exclude_none=True).items()
        }
