"""
IoT Hub routing endpoint backed by a Storage Container.

Endpoints are not standalone ARM resources; they live in the routing section
of their IoT Hub. Endpoint names are unique across all endpoint types of a
hub, so an endpoint of another type with the same name is a kind mismatch.
"""
from typing import Annotated, ClassVar, Optional

from azure.mgmt.iothub.models import RoutingStorageContainerProperties
from pydantic import Field, SecretStr, field_validator

from provisioner.modules.reconcile.domain.comparison import (
    case_insensitive_equal,
    connection_string_equal,
    resource_group_equal,
)
from provisioner.modules.reconcile.domain.factory import ResourceKind, ResourceKindRegistry
from provisioner.modules.reconcile.domain.identity import (
    IdentityResolver,
    ParentIdentity,
    ResourceIdentity,
)
from provisioner.modules.reconcile.domain.mapper import PropertyMapper, as_secret, secret_value
from provisioner.modules.reconcile.domain.schema import FieldTraits, PropertyRecord

STORAGE_CONTAINER_ENDPOINT_TYPE_NAME = "azurerm_iothub_endpoint_storage_container"

# Kind tags, one per routing endpoint collection of an IoT Hub.
ENDPOINT_KIND_STORAGE_CONTAINER = "StorageContainer"
ENDPOINT_KIND_EVENT_HUB = "EventHub"
ENDPOINT_KIND_SERVICE_BUS_QUEUE = "ServiceBusQueue"
ENDPOINT_KIND_SERVICE_BUS_TOPIC = "ServiceBusTopic"

ENDPOINT_COLLECTIONS = {
    "storage_containers": ENDPOINT_KIND_STORAGE_CONTAINER,
    "event_hubs": ENDPOINT_KIND_EVENT_HUB,
    "service_bus_queues": ENDPOINT_KIND_SERVICE_BUS_QUEUE,
    "service_bus_topics": ENDPOINT_KIND_SERVICE_BUS_TOPIC,
}

ENCODINGS = ("Avro", "AvroDeflate", "JSON")


class IotHubId(ParentIdentity):
    KIND = "IoT Hub"
    PROVIDER = "Microsoft.Devices"
    TYPE_SEGMENT = "IotHubs"


class EndpointStorageContainerId(ResourceIdentity):
    KIND = "IoT Hub Endpoint Storage Container"
    PARENT = IotHubId
    CHILD_SEGMENT = "Endpoints"


class StorageContainerEndpointRecord(PropertyRecord):
    name: Annotated[Optional[str], FieldTraits(identity=True)] = None
    iothub_name: Annotated[Optional[str], FieldTraits(identity=True)] = None
    iothub_id: Annotated[Optional[str], FieldTraits(identity=True)] = None
    resource_group_name: Annotated[
        Optional[str], FieldTraits(identity=True, equivalent=resource_group_equal)
    ] = None

    connection_string: Annotated[
        Optional[SecretStr], FieldTraits(sensitive=True, equivalent=connection_string_equal)
    ] = None
    container_name: Optional[str] = None
    # Unset values take the service defaults: "{iothub}/{partition}/{YYYY}/{MM}/{DD}/{HH}/{mm}",
    # 300 seconds, 314572800 bytes and Avro.
    file_name_format: Optional[str] = None
    batch_frequency_in_seconds: Optional[int] = Field(default=None, ge=60, le=720)
    max_chunk_size_in_bytes: Optional[int] = Field(default=None, ge=10485760, le=524288000)
    encoding: Annotated[Optional[str], FieldTraits(equivalent=case_insensitive_equal)] = None

    EXACTLY_ONE_OF: ClassVar[tuple[tuple[str, ...], ...]] = (("iothub_name", "iothub_id"),)

    @field_validator("encoding")
    @classmethod
    def _known_encoding(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value.lower() not in {e.lower() for e in ENCODINGS}:
            raise ValueError(f"encoding must be one of {', '.join(ENCODINGS)}")
        return value


class StorageContainerEndpointMapper(PropertyMapper[StorageContainerEndpointRecord]):
    kind = ENDPOINT_KIND_STORAGE_CONTAINER
    record_type = StorageContainerEndpointRecord

    def _expand_model(self, record: StorageContainerEndpointRecord) -> RoutingStorageContainerProperties:
        # The backend overwrites `name` with the identity name when it stores the endpoint.
        return RoutingStorageContainerProperties(
            name=record.name,
            container_name=record.container_name,
            connection_string=secret_value(record.connection_string),
            file_name_format=record.file_name_format,
            batch_frequency_in_seconds=record.batch_frequency_in_seconds,
            max_chunk_size_in_bytes=record.max_chunk_size_in_bytes,
            encoding=record.encoding,
        )

    def _flatten_model(self, model: RoutingStorageContainerProperties) -> StorageContainerEndpointRecord:
        encoding = model.encoding
        return StorageContainerEndpointRecord(
            connection_string=as_secret(model.connection_string),
            container_name=model.container_name,
            file_name_format=model.file_name_format,
            batch_frequency_in_seconds=model.batch_frequency_in_seconds,
            max_chunk_size_in_bytes=model.max_chunk_size_in_bytes,
            encoding=getattr(encoding, "value", encoding),
        )


STORAGE_CONTAINER_ENDPOINT = ResourceKindRegistry.register(
    ResourceKind(
        type_name=STORAGE_CONTAINER_ENDPOINT_TYPE_NAME,
        display_name="IoT Hub Endpoint Storage Container",
        record_type=StorageContainerEndpointRecord,
        resolver=IdentityResolver(
            EndpointStorageContainerId,
            parent_name_field="iothub_name",
            parent_id_field="iothub_id",
        ),
        mapper=StorageContainerEndpointMapper(),
    )
)
