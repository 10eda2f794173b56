import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from azure.mgmt.datafactory.models import (
    CosmosDbMongoDbApiLinkedService,
    LinkedServiceResource,
    SecureString,
)
from pydantic import ValidationError
from azure.mgmt.iothub.models import RoutingEventHubProperties, RoutingStorageContainerProperties
from pydantic import SecretStr
from structlog.testing import capture_logs

from provisioner.modules.reconcile.domain.adapter import ABSENT, ReconcileAdapter
from provisioner.modules.reconcile.domain.backend import BackendObject, ResourceBackend
from provisioner.modules.reconcile.domain.comparison import mask_connection_string
from provisioner.modules.reconcile.domain.kinds.datafactory import (
    COSMOSDB_MONGOAPI_LINKED_SERVICE,
    CosmosDbMongoApiLinkedServiceRecord,
)
from provisioner.modules.reconcile.domain.kinds.iothub import (
    STORAGE_CONTAINER_ENDPOINT,
    StorageContainerEndpointRecord,
)
from provisioner.shared.core.exceptions import (
    AlreadyExistsError,
    BackendError,
    BackendNotFoundError,
    InvalidConfigError,
    MalformedIdentityError,
    ReconcileTimeoutError,
    TypeMismatchError,
)
from provisioner.shared.core.logging import REDACTED


def _mock_backend(subscription_id="sub"):
    backend = MagicMock(spec=ResourceBackend)
    backend.subscription_id = subscription_id
    backend.get = AsyncMock()
    backend.create_or_update = AsyncMock()
    backend.delete = AsyncMock()
    return backend


class TestAbsent:
    def test_sentinel(self):
        assert not ABSENT
        assert repr(ABSENT) == "ABSENT"
        assert type(ABSENT)() is ABSENT


class TestLinkedServiceScenarios:
    @pytest.mark.asyncio
    async def test_create_read_delete(self, linked_service_adapter, linked_service_config, memory_backend):
        handle = await linked_service_adapter.apply(linked_service_config, new_resource=True)
        assert handle == (
            f"/subscriptions/{memory_backend.subscription_id}/resourceGroups/rg-acctest"
            "/providers/Microsoft.DataFactory/factories/acctestdf/linkedservices/acctestlscosmosdb"
        )

        state = await linked_service_adapter.read(handle)
        assert state.database == "mydb"
        assert state.server_version_is_32_or_higher is True

        await linked_service_adapter.delete(handle)
        assert await linked_service_adapter.read(handle) is ABSENT

    @pytest.mark.asyncio
    async def test_read_stamps_identity_fields(self, linked_service_adapter, linked_service_config, factory_id):
        handle = await linked_service_adapter.apply(linked_service_config)
        state = await linked_service_adapter.read(handle)

        assert state.name == "acctestlscosmosdb"
        assert state.data_factory_id == factory_id
        assert state.data_factory_name == "acctestdf"
        assert state.resource_group_name == "rg-acctest"

    @pytest.mark.asyncio
    async def test_round_trip_through_identity_backend(self, linked_service_adapter, linked_service_config):
        handle = await linked_service_adapter.apply(linked_service_config)
        state = await linked_service_adapter.read(handle)
        assert state.without_identity() == linked_service_config.without_identity()

    @pytest.mark.asyncio
    async def test_update_replaces_wholesale(self, linked_service_adapter, linked_service_config):
        handle = await linked_service_adapter.apply(
            linked_service_config.model_copy(update={"description": "first", "annotations": ["a"]})
        )
        await linked_service_adapter.apply(linked_service_config)

        state = await linked_service_adapter.read(handle)
        assert state.description is None
        assert state.annotations is None

    @pytest.mark.asyncio
    async def test_apply_with_parent_by_name(self, linked_service_adapter, memory_backend):
        config = CosmosDbMongoApiLinkedServiceRecord.from_config(
            {
                "name": "ls1",
                "data_factory_name": "df1",
                "resource_group_name": "rg1",
                "database": "mydb",
            }
        )
        handle = await linked_service_adapter.apply(config)
        assert handle.startswith(f"/subscriptions/{memory_backend.subscription_id}/resourceGroups/rg1/")

    @pytest.mark.asyncio
    async def test_apply_without_name(self, linked_service_adapter, memory_backend, factory_id):
        config = CosmosDbMongoApiLinkedServiceRecord(data_factory_id=factory_id)
        with pytest.raises(InvalidConfigError):
            await linked_service_adapter.apply(config)
        assert len(memory_backend) == 0


class TestImportGuard:
    @pytest.mark.asyncio
    async def test_new_resource_over_existing_object(self, endpoint_adapter, endpoint_config, memory_backend):
        handle = await endpoint_adapter.apply(endpoint_config, new_resource=True)

        with pytest.raises(AlreadyExistsError) as exc_info:
            await endpoint_adapter.apply(endpoint_config, new_resource=True)

        assert exc_info.value.resource_id == handle
        assert "imported" in exc_info.value.message
        assert len(memory_backend) == 1

    @pytest.mark.asyncio
    async def test_update_does_not_probe(self, endpoint_id, endpoint_config):
        backend = _mock_backend()
        adapter = ReconcileAdapter(STORAGE_CONTAINER_ENDPOINT, backend)

        result = await adapter.create_or_update(endpoint_id, endpoint_config)

        assert result is endpoint_id
        backend.get.assert_not_called()
        backend.create_or_update.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_probe_failure_is_backend_error(self, endpoint_id, endpoint_config):
        backend = _mock_backend()
        backend.get.side_effect = RuntimeError("403 Forbidden")
        adapter = ReconcileAdapter(STORAGE_CONTAINER_ENDPOINT, backend)

        with pytest.raises(BackendError, match="checking for presence of existing") as exc_info:
            await adapter.create_or_update(endpoint_id, endpoint_config, new_resource=True)

        assert isinstance(exc_info.value.cause, RuntimeError)
        backend.create_or_update.assert_not_called()

    @pytest.mark.asyncio
    async def test_existing_without_backend_id_reports_identity(self, endpoint_id, endpoint_config):
        backend = _mock_backend()
        backend.get.return_value = BackendObject(kind="StorageContainer", model=MagicMock())
        adapter = ReconcileAdapter(STORAGE_CONTAINER_ENDPOINT, backend)

        with pytest.raises(AlreadyExistsError) as exc_info:
            await adapter.create_or_update(endpoint_id, endpoint_config, new_resource=True)
        assert exc_info.value.resource_id == str(endpoint_id)


class TestRead:
    @pytest.mark.asyncio
    async def test_missing_object_is_absent(self, endpoint_adapter, endpoint_id):
        assert await endpoint_adapter.read(endpoint_id) is ABSENT

    @pytest.mark.asyncio
    async def test_malformed_handle(self, endpoint_adapter):
        with pytest.raises(MalformedIdentityError):
            await endpoint_adapter.read("not-a-valid-id")

    @pytest.mark.asyncio
    async def test_backend_failure_is_backend_error(self, endpoint_id):
        backend = _mock_backend()
        cause = RuntimeError("503 Service Unavailable")
        backend.get.side_effect = cause
        adapter = ReconcileAdapter(STORAGE_CONTAINER_ENDPOINT, backend)

        with pytest.raises(BackendError) as exc_info:
            await adapter.read(endpoint_id)

        assert exc_info.value.cause is cause
        assert exc_info.value.__cause__ is cause
        assert "retrieving" in exc_info.value.message
        assert exc_info.value.details["name"] == endpoint_id.name

    @pytest.mark.asyncio
    async def test_other_endpoint_type_is_type_mismatch(self, endpoint_id):
        backend = _mock_backend()
        backend.get.return_value = BackendObject(
            kind="EventHub", model=RoutingEventHubProperties(name="acctest", connection_string="x")
        )
        adapter = ReconcileAdapter(STORAGE_CONTAINER_ENDPOINT, backend)

        with pytest.raises(TypeMismatchError):
            await adapter.read(endpoint_id)

    @pytest.mark.asyncio
    async def test_masked_secret_carried_forward_from_prior(self, endpoint_id, endpoint_config):
        backend = _mock_backend()
        backend.get.return_value = BackendObject(
            kind="StorageContainer",
            model=RoutingStorageContainerProperties(
                name="acctest",
                connection_string=mask_connection_string(
                    endpoint_config.connection_string.get_secret_value()
                ),
                container_name="acctestcont",
            ),
        )
        adapter = ReconcileAdapter(STORAGE_CONTAINER_ENDPOINT, backend)

        masked = await adapter.read(endpoint_id)
        assert "****" in masked.connection_string.get_secret_value()

        state = await adapter.read(endpoint_id, prior=endpoint_config)
        assert state.connection_string == endpoint_config.connection_string

    @pytest.mark.asyncio
    async def test_omitted_secret_carried_forward_from_prior(self, linked_service_id, linked_service_config):
        backend = _mock_backend()
        backend.get.return_value = BackendObject(
            kind="CosmosDbMongoDbApi",
            model=LinkedServiceResource(
                properties=CosmosDbMongoDbApiLinkedService(connection_string=None, database="mydb")
            ),
        )
        adapter = ReconcileAdapter(COSMOSDB_MONGOAPI_LINKED_SERVICE, backend)

        state = await adapter.read(linked_service_id, prior=linked_service_config)
        assert state.connection_string == linked_service_config.connection_string

    @pytest.mark.asyncio
    async def test_fully_masked_secret_carried_forward_from_prior(
        self, linked_service_id, linked_service_config
    ):
        backend = _mock_backend()
        backend.get.return_value = BackendObject(
            kind="CosmosDbMongoDbApi",
            model=LinkedServiceResource(
                properties=CosmosDbMongoDbApiLinkedService(
                    connection_string=SecureString(value="**********"),
                    database="mydb",
                    is_server_version_above32=True,
                )
            ),
        )
        adapter = ReconcileAdapter(COSMOSDB_MONGOAPI_LINKED_SERVICE, backend)

        bare = await adapter.read(linked_service_id)
        assert bare.connection_string is None

        state = await adapter.read(linked_service_id, prior=linked_service_config)
        assert state.connection_string == linked_service_config.connection_string
        assert "connection_string" not in linked_service_config.diff(state)

    @pytest.mark.asyncio
    async def test_rotated_secret_is_not_overwritten(self, endpoint_id, endpoint_config):
        rotated = "DefaultEndpointsProtocol=https;AccountName=acctestsa;AccountKey=bmV3;EndpointSuffix=core.windows.net"
        backend = _mock_backend()
        backend.get.return_value = BackendObject(
            kind="StorageContainer",
            model=RoutingStorageContainerProperties(
                name="acctest", connection_string=rotated, container_name="acctestcont"
            ),
        )
        adapter = ReconcileAdapter(STORAGE_CONTAINER_ENDPOINT, backend)

        state = await adapter.read(endpoint_id, prior=endpoint_config)
        assert state.connection_string == SecretStr(rotated)
        assert "connection_string" in endpoint_config.diff(state)

    @pytest.mark.asyncio
    async def test_backend_id_with_other_resource_group_case(self, linked_service_id):
        backend = _mock_backend()
        backend_id = str(linked_service_id).replace("rg-acctest", "RG-ACCTEST")
        backend.get.return_value = BackendObject(
            kind="CosmosDbMongoDbApi",
            model=LinkedServiceResource(
                properties=CosmosDbMongoDbApiLinkedService(connection_string=None, database="mydb")
            ),
            id=backend_id,
        )
        adapter = ReconcileAdapter(COSMOSDB_MONGOAPI_LINKED_SERVICE, backend)

        with capture_logs() as logs:
            state = await adapter.read(linked_service_id)

        assert state.resource_group_name == "rg-acctest"
        assert not [log for log in logs if log["event"] == "reconcile_backend_id_mismatch"]

    @pytest.mark.asyncio
    async def test_invalid_backend_object_is_backend_error(self, endpoint_id):
        backend = _mock_backend()
        backend.get.return_value = BackendObject(
            kind="StorageContainer",
            model=RoutingStorageContainerProperties(
                name="acctest",
                connection_string="AccountName=sa;AccountKey=****",
                container_name="acctestcont",
                batch_frequency_in_seconds=30,
            ),
        )
        adapter = ReconcileAdapter(STORAGE_CONTAINER_ENDPOINT, backend)

        with pytest.raises(BackendError, match="flattening") as exc_info:
            await adapter.read(endpoint_id)
        assert isinstance(exc_info.value.cause, ValidationError)
        assert exc_info.value.details["name"] == endpoint_id.name


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, endpoint_adapter, endpoint_config, memory_backend):
        handle = await endpoint_adapter.apply(endpoint_config)
        await endpoint_adapter.delete(handle)
        await endpoint_adapter.delete(handle)
        assert len(memory_backend) == 0
        assert await endpoint_adapter.read(handle) is ABSENT

    @pytest.mark.asyncio
    async def test_delete_never_created(self, endpoint_adapter, endpoint_id):
        await endpoint_adapter.delete(endpoint_id)

    @pytest.mark.asyncio
    async def test_delete_failure_is_backend_error(self, endpoint_id):
        backend = _mock_backend()
        backend.delete.side_effect = RuntimeError("409 Conflict")
        adapter = ReconcileAdapter(STORAGE_CONTAINER_ENDPOINT, backend)

        with pytest.raises(BackendError, match="deleting"):
            await adapter.delete(endpoint_id)

    @pytest.mark.asyncio
    async def test_not_found_from_backend_is_success(self, endpoint_id):
        backend = _mock_backend()
        backend.delete.side_effect = BackendNotFoundError("gone")
        adapter = ReconcileAdapter(STORAGE_CONTAINER_ENDPOINT, backend)

        await adapter.delete(str(endpoint_id))
        backend.delete.assert_awaited_once_with(endpoint_id)


class TestWriteFailures:
    @pytest.mark.asyncio
    async def test_write_failure_is_backend_error(self, endpoint_id, endpoint_config):
        backend = _mock_backend()
        cause = RuntimeError("400 Bad Request")
        backend.create_or_update.side_effect = cause
        adapter = ReconcileAdapter(STORAGE_CONTAINER_ENDPOINT, backend)

        with pytest.raises(BackendError, match="creating/updating") as exc_info:
            await adapter.create_or_update(endpoint_id, endpoint_config)
        assert exc_info.value.cause is cause

    @pytest.mark.asyncio
    async def test_kind_mismatch_on_write_is_not_wrapped(self, endpoint_id, endpoint_config):
        backend = _mock_backend()
        backend.create_or_update.side_effect = TypeMismatchError("StorageContainer", "EventHub")
        adapter = ReconcileAdapter(STORAGE_CONTAINER_ENDPOINT, backend)

        with pytest.raises(TypeMismatchError) as exc_info:
            await adapter.create_or_update(endpoint_id, endpoint_config)
        assert exc_info.value.received == "EventHub"


class TestTimeouts:
    @pytest.mark.asyncio
    async def test_read_deadline(self, endpoint_id):
        async def slow_get(identity):
            await asyncio.sleep(1)

        backend = _mock_backend()
        backend.get.side_effect = slow_get
        adapter = ReconcileAdapter(STORAGE_CONTAINER_ENDPOINT, backend)

        with pytest.raises(ReconcileTimeoutError) as exc_info:
            await adapter.read(endpoint_id, timeout=0.01)
        assert exc_info.value.details["operation_type"] == "read"
        assert exc_info.value.details["name"] == endpoint_id.name

    @pytest.mark.asyncio
    async def test_create_deadline(self, endpoint_id, endpoint_config):
        async def slow_write(identity, obj):
            await asyncio.sleep(1)

        backend = _mock_backend()
        backend.get.side_effect = BackendNotFoundError("missing")
        backend.create_or_update.side_effect = slow_write
        adapter = ReconcileAdapter(STORAGE_CONTAINER_ENDPOINT, backend)

        with pytest.raises(ReconcileTimeoutError) as exc_info:
            await adapter.create_or_update(endpoint_id, endpoint_config, new_resource=True, timeout=0.01)
        assert exc_info.value.details["operation_type"] == "create"


class TestLogging:
    @pytest.mark.asyncio
    async def test_secrets_never_logged(self, endpoint_adapter, endpoint_config):
        with capture_logs() as logs:
            await endpoint_adapter.apply(endpoint_config)

        started = next(log for log in logs if log["event"] == "reconcile_update_started")
        assert started["fields"]["connection_string"] == REDACTED
        secret = endpoint_config.connection_string.get_secret_value()
        assert all(secret not in repr(log) for log in logs)

    @pytest.mark.asyncio
    async def test_absent_logged(self, endpoint_adapter, endpoint_id):
        with capture_logs() as logs:
            await endpoint_adapter.read(endpoint_id)
        assert any(log["event"] == "reconcile_read_absent" for log in logs)
