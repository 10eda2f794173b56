"""
Resource identities and the Identity Resolver.

Identities are ARM-style paths. Parsing is strict: segment count, key casing
and provider namespace must match the canonical form exactly, so that
``cls.parse(str(identity)) == identity`` and nothing else parses.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Generic, Optional, Tuple, Type, TypeVar, Union

from provisioner.shared.core.exceptions import InvalidConfigError, MalformedIdentityError

# (key, fixed value) pairs; a fixed value of None marks a variable segment.
Segments = Tuple[Tuple[str, Optional[str]], ...]


def _format_segments(template: Segments, values: Tuple[str, ...]) -> str:
    parts: list[str] = []
    variable = iter(values)
    for key, fixed in template:
        parts.extend([key, fixed if fixed is not None else next(variable)])
    return "/" + "/".join(parts)


def _parse_segments(handle: str, template: Segments, kind: str) -> Tuple[str, ...]:
    if not isinstance(handle, str) or not handle.startswith("/"):
        raise MalformedIdentityError(
            f"parsing {handle!r}: {kind} ID must start with '/'",
            details={"handle": handle, "kind": kind},
        )
    parts = handle[1:].split("/")
    if len(parts) != 2 * len(template):
        raise MalformedIdentityError(
            f"parsing {handle!r}: expected {2 * len(template)} segments for a {kind} ID, got {len(parts)}",
            details={"handle": handle, "kind": kind},
        )
    values: list[str] = []
    for index, (key, fixed) in enumerate(template):
        seen_key, value = parts[2 * index], parts[2 * index + 1]
        if seen_key != key:
            raise MalformedIdentityError(
                f"parsing {handle!r}: expected segment {key!r}, got {seen_key!r}",
                details={"handle": handle, "kind": kind},
            )
        if not value:
            raise MalformedIdentityError(
                f"parsing {handle!r}: segment {key!r} has an empty value",
                details={"handle": handle, "kind": kind},
            )
        if fixed is not None:
            if value != fixed:
                raise MalformedIdentityError(
                    f"parsing {handle!r}: expected {key!r} to be {fixed!r}, got {value!r}",
                    details={"handle": handle, "kind": kind},
                )
            continue
        values.append(value)
    return tuple(values)


@dataclass(frozen=True)
class ParentIdentity:
    """Identity of the parent resource (a Data Factory, an IoT Hub)."""

    subscription_id: str
    resource_group: str
    name: str

    KIND: ClassVar[str] = "Parent"
    PROVIDER: ClassVar[str] = ""
    TYPE_SEGMENT: ClassVar[str] = ""

    @classmethod
    def _template(cls) -> Segments:
        return (
            ("subscriptions", None),
            ("resourceGroups", None),
            ("providers", cls.PROVIDER),
            (cls.TYPE_SEGMENT, None),
        )

    @classmethod
    def parse(cls, handle: str):
        return cls(*_parse_segments(handle, cls._template(), cls.KIND))

    def __str__(self) -> str:
        return _format_segments(
            self._template(), (self.subscription_id, self.resource_group, self.name)
        )


@dataclass(frozen=True)
class ResourceIdentity:
    """Composite key addressing exactly one child object in the backend."""

    subscription_id: str
    resource_group: str
    parent_name: str
    name: str

    KIND: ClassVar[str] = "Resource"
    PARENT: ClassVar[Type[ParentIdentity]] = ParentIdentity
    CHILD_SEGMENT: ClassVar[str] = ""

    @classmethod
    def _template(cls) -> Segments:
        return cls.PARENT._template() + ((cls.CHILD_SEGMENT, None),)

    @classmethod
    def parse(cls, handle: str):
        return cls(*_parse_segments(handle, cls._template(), cls.KIND))

    def __str__(self) -> str:
        return _format_segments(
            self._template(),
            (self.subscription_id, self.resource_group, self.parent_name, self.name),
        )

    @property
    def parent(self) -> ParentIdentity:
        return self.PARENT(self.subscription_id, self.resource_group, self.parent_name)

    def same_resource(self, other: "ResourceIdentity") -> bool:
        """Equality with the resource group compared case-insensitively.

        Some backends normalise the resource group casing in responses; the
        canonical identity keeps the user's casing.
        """
        return (
            type(self) is type(other)
            and self.subscription_id == other.subscription_id
            and self.resource_group.lower() == other.resource_group.lower()
            and self.parent_name == other.parent_name
            and self.name == other.name
        )

    def describe(self) -> dict[str, str]:
        """Identity fields for error details and log context."""
        return {
            "subscription_id": self.subscription_id,
            "resource_group": self.resource_group,
            "parent_name": self.parent_name,
            "name": self.name,
        }


@dataclass(frozen=True)
class ParentByName:
    resource_group: str
    name: str


@dataclass(frozen=True)
class ParentById:
    parent_id: str


ParentReference = Union[ParentByName, ParentById]

I = TypeVar("I", bound=ResourceIdentity)


def _field(config: Any, name: str) -> Optional[str]:
    value = getattr(config, name, None)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class IdentityResolver(Generic[I]):
    """
    Resolves identities for one resource kind.

    The parent can be given by name (plus resource group) or by ID. Both shapes
    are legacy-compatible and resolve to the same identity type; exactly one
    must be supplied.
    """

    def __init__(
        self,
        identity_type: Type[I],
        *,
        parent_name_field: str,
        parent_id_field: str,
        resource_group_field: str = "resource_group_name",
        name_field: str = "name",
    ):
        self.identity_type = identity_type
        self.parent_name_field = parent_name_field
        self.parent_id_field = parent_id_field
        self.resource_group_field = resource_group_field
        self.name_field = name_field

    def parent_reference(self, config: Any) -> ParentReference:
        parent_name = _field(config, self.parent_name_field)
        parent_id = _field(config, self.parent_id_field)
        if bool(parent_name) == bool(parent_id):
            raise InvalidConfigError(
                f"exactly one of `{self.parent_name_field}` or `{self.parent_id_field}` must be specified",
                details={"fields": [self.parent_name_field, self.parent_id_field]},
            )
        if parent_id:
            return ParentById(parent_id)
        resource_group = _field(config, self.resource_group_field)
        if not resource_group:
            raise InvalidConfigError(
                f"`{self.resource_group_field}` is required when `{self.parent_name_field}` is used",
                details={"fields": [self.resource_group_field]},
            )
        return ParentByName(resource_group=resource_group, name=str(parent_name))

    def resolve_for_write(self, config: Any, subscription_id: str) -> I:
        name = _field(config, self.name_field)
        if not name:
            raise InvalidConfigError(
                f"`{self.name_field}` is required", details={"fields": [self.name_field]}
            )

        reference = self.parent_reference(config)
        if isinstance(reference, ParentById):
            try:
                parent = self.identity_type.PARENT.parse(reference.parent_id)
            except MalformedIdentityError as exc:
                raise InvalidConfigError(
                    f"`{self.parent_id_field}` is not a valid {self.identity_type.PARENT.KIND} ID: {exc.message}",
                    details={"fields": [self.parent_id_field]},
                ) from exc
        else:
            if not subscription_id:
                raise InvalidConfigError(
                    "a subscription ID is required to resolve a parent given by name"
                )
            parent = self.identity_type.PARENT(
                subscription_id, reference.resource_group, reference.name
            )

        return self.identity_type(
            parent.subscription_id, parent.resource_group, parent.name, name
        )

    def parse(self, handle: str) -> I:
        return self.identity_type.parse(handle)

    def identity_fields(self, identity: I) -> dict[str, str]:
        """Every identity-derived configuration field, in all legacy shapes."""
        return {
            self.name_field: identity.name,
            self.resource_group_field: identity.resource_group,
            self.parent_name_field: identity.parent_name,
            self.parent_id_field: str(identity.parent),
        }
