from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from provisioner.modules.reconcile.domain.identity import ResourceIdentity


@dataclass(frozen=True)
class BackendObject:
    """
    Transient copy of a vendor-side object.

    `kind` is the discriminator of the vendor representation (for example the
    linked service type); `model` is the vendor SDK model itself.
    """
    kind: str
    model: Any
    id: Optional[str] = None


class ResourceBackend(ABC):
    """
    Port to the management API that persists one resource kind.

    Implementations raise BackendNotFoundError when the addressed object does
    not exist and let every other failure propagate unchanged.
    """

    subscription_id: str = ""

    @abstractmethod
    async def get(self, identity: ResourceIdentity) -> BackendObject:
        raise NotImplementedError()

    @abstractmethod
    async def create_or_update(self, identity: ResourceIdentity, obj: BackendObject) -> None:
        raise NotImplementedError()

    @abstractmethod
    async def delete(self, identity: ResourceIdentity) -> None:
        raise NotImplementedError()

    async def close(self) -> None:
        """Release clients and credentials held by the backend."""
        return None
