"""
Data Factory Linked Service for Cosmos DB (MongoDB API).
"""
from typing import Annotated, Any, ClassVar, Optional

from azure.mgmt.datafactory.models import (
    CosmosDbMongoDbApiLinkedService,
    IntegrationRuntimeReference,
    LinkedServiceResource,
    ParameterSpecification,
    SecureString,
)
from pydantic import SecretStr

from provisioner.modules.reconcile.domain.comparison import (
    connection_string_equal,
    is_fully_masked,
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

COSMOSDB_MONGOAPI_TYPE_NAME = "azurerm_data_factory_linked_service_cosmosdb_mongoapi"


class DataFactoryId(ParentIdentity):
    KIND = "Data Factory"
    PROVIDER = "Microsoft.DataFactory"
    TYPE_SEGMENT = "factories"


class LinkedServiceId(ResourceIdentity):
    KIND = "Data Factory Linked Service"
    PARENT = DataFactoryId
    CHILD_SEGMENT = "linkedservices"


class CosmosDbMongoApiLinkedServiceRecord(PropertyRecord):
    name: Annotated[Optional[str], FieldTraits(identity=True)] = None
    # Legacy shape: factory name plus resource group. Superseded by data_factory_id.
    data_factory_name: Annotated[Optional[str], FieldTraits(identity=True)] = None
    data_factory_id: Annotated[Optional[str], FieldTraits(identity=True)] = None
    resource_group_name: Annotated[
        Optional[str], FieldTraits(identity=True, equivalent=resource_group_equal)
    ] = None

    connection_string: Annotated[
        Optional[SecretStr], FieldTraits(sensitive=True, equivalent=connection_string_equal)
    ] = None
    database: Optional[str] = None
    server_version_is_32_or_higher: bool = False
    description: Optional[str] = None
    integration_runtime_name: Optional[str] = None
    parameters: Annotated[Optional[dict[str, str]], FieldTraits(unordered=True)] = None
    annotations: Annotated[Optional[list[str]], FieldTraits(unordered=True)] = None
    additional_properties: Annotated[Optional[dict[str, str]], FieldTraits(unordered=True)] = None

    EXACTLY_ONE_OF: ClassVar[tuple[tuple[str, ...], ...]] = (("data_factory_name", "data_factory_id"),)


def expand_parameters(parameters: Optional[dict[str, str]]) -> Optional[dict[str, ParameterSpecification]]:
    if parameters is None:
        return None
    return {
        key: ParameterSpecification(type="String", default_value=value)
        for key, value in parameters.items()
    }


def flatten_parameters(parameters: Optional[dict[str, Any]]) -> Optional[dict[str, str]]:
    if parameters is None:
        return None
    output: dict[str, str] = {}
    for key, spec in parameters.items():
        if spec is None:
            continue
        default = getattr(spec, "default_value", None)
        output[key] = "" if default is None else str(default)
    return output


def expand_integration_runtime(name: Optional[str]) -> Optional[IntegrationRuntimeReference]:
    if not name:
        return None
    return IntegrationRuntimeReference(type="IntegrationRuntimeReference", reference_name=name)


def _connection_string(value: Any) -> Optional[str]:
    # Echoed back as a SecureString model, or as its wire dict after deserialisation.
    if value is None:
        return None
    if isinstance(value, SecureString):
        text = value.value
    elif isinstance(value, dict):
        text = value.get("value")
    else:
        text = str(value)
    # The service masks the whole secret on read; that is no value at all.
    if text is None or is_fully_masked(text):
        return None
    return text


class CosmosDbMongoApiLinkedServiceMapper(PropertyMapper[CosmosDbMongoApiLinkedServiceRecord]):
    kind = "CosmosDbMongoDbApi"
    record_type = CosmosDbMongoApiLinkedServiceRecord

    def _expand_model(self, record: CosmosDbMongoApiLinkedServiceRecord) -> LinkedServiceResource:
        connection_string = secret_value(record.connection_string)
        properties = CosmosDbMongoDbApiLinkedService(
            connection_string=(
                SecureString(value=connection_string) if connection_string is not None else None
            ),
            database=record.database,
            is_server_version_above32=record.server_version_is_32_or_higher,
            description=record.description,
            connect_via=expand_integration_runtime(record.integration_runtime_name),
            parameters=expand_parameters(record.parameters),
            annotations=list(record.annotations) if record.annotations is not None else None,
            additional_properties=(
                dict(record.additional_properties)
                if record.additional_properties is not None
                else None
            ),
        )
        return LinkedServiceResource(properties=properties)

    def _flatten_model(self, model: LinkedServiceResource) -> CosmosDbMongoApiLinkedServiceRecord:
        properties = model.properties
        connect_via = properties.connect_via
        return CosmosDbMongoApiLinkedServiceRecord(
            connection_string=as_secret(_connection_string(properties.connection_string)),
            database=str(properties.database) if properties.database is not None else None,
            server_version_is_32_or_higher=bool(properties.is_server_version_above32),
            description=properties.description,
            integration_runtime_name=connect_via.reference_name if connect_via is not None else None,
            parameters=flatten_parameters(properties.parameters),
            annotations=(
                [str(a) for a in properties.annotations]
                if properties.annotations is not None
                else None
            ),
            additional_properties=(
                {str(k): str(v) for k, v in properties.additional_properties.items()}
                if properties.additional_properties is not None
                else None
            ),
        )


COSMOSDB_MONGOAPI_LINKED_SERVICE = ResourceKindRegistry.register(
    ResourceKind(
        type_name=COSMOSDB_MONGOAPI_TYPE_NAME,
        display_name="Data Factory Linked Service CosmosDB (MongoDB API)",
        record_type=CosmosDbMongoApiLinkedServiceRecord,
        resolver=IdentityResolver(
            LinkedServiceId,
            parent_name_field="data_factory_name",
            parent_id_field="data_factory_id",
        ),
        mapper=CosmosDbMongoApiLinkedServiceMapper(),
    )
)
