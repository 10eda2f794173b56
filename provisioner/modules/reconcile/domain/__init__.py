from .adapter import ABSENT, ReconcileAdapter
from .backend import BackendObject, ResourceBackend
from .factory import ResourceKind, ResourceKindRegistry
from .identity import IdentityResolver, ParentById, ParentByName, ResourceIdentity
from .schema import FieldTraits, PropertyRecord

__all__ = [
    "ABSENT",
    "ReconcileAdapter",
    "BackendObject",
    "ResourceBackend",
    "ResourceKind",
    "ResourceKindRegistry",
    "IdentityResolver",
    "ParentById",
    "ParentByName",
    "ResourceIdentity",
    "FieldTraits",
    "PropertyRecord",
]
