from abc import ABC, abstractmethod
from typing import Any, ClassVar, Generic, Optional, Type, TypeVar

from pydantic import SecretStr

from provisioner.modules.reconcile.domain.backend import BackendObject
from provisioner.modules.reconcile.domain.schema import PropertyRecord
from provisioner.shared.core.exceptions import TypeMismatchError

R = TypeVar("R", bound=PropertyRecord)


def secret_value(value: Optional[SecretStr]) -> Optional[str]:
    return value.get_secret_value() if value is not None else None


def as_secret(value: Any) -> Optional[SecretStr]:
    return SecretStr(str(value)) if value is not None else None


class PropertyMapper(ABC, Generic[R]):
    """
    Bidirectional transform between a PropertyRecord and the backend model.

    Both directions are pure. Absent optional fields expand to None so the
    backend applies its own defaults, and flatten returns collections in the
    order the backend gave them.
    """

    kind: ClassVar[str]
    record_type: ClassVar[Type[PropertyRecord]]

    def expand(self, record: R) -> BackendObject:
        return BackendObject(kind=self.kind, model=self._expand_model(record))

    def flatten(self, obj: BackendObject) -> R:
        if obj.kind != self.kind:
            raise TypeMismatchError(self.kind, obj.kind, details={"backend_id": obj.id})
        return self._flatten_model(obj.model)

    @abstractmethod
    def _expand_model(self, record: R) -> Any:
        raise NotImplementedError()

    @abstractmethod
    def _flatten_model(self, model: Any) -> R:
        raise NotImplementedError()
