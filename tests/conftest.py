from logging import Logger
from unittest.mock import Mock

import pytest
from kubernetes import client

from kubevirt_csi.clients.infra import InfraClusterClient
from kubevirt_csi.config import Settings
from kubevirt_csi.logger import create_logger
from kubevirt_csi.models.enforcement import StorageClassEnforcement
from kubevirt_csi.services.controller import ControllerService
from kubevirt_csi.services.node import NodeService
from tests.fakes import (
    FakeApiServer,
    FakeDeviceLister,
    FakeFsMaker,
    FakeInfraClient,
    FakeMounter,
    FakeResizer,
)
from tests.utils import random_lower_string


@pytest.fixture(autouse=True)
def clear_os_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear the driver settings from the OS environment."""
    for key in Settings.model_fields.keys():
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def logger() -> Logger:
    return create_logger(random_lower_string(), level="DEBUG")


@pytest.fixture
def context() -> Mock:
    """Fixture with a gRPC servicer context."""
    return Mock()


@pytest.fixture
def infra_client() -> FakeInfraClient:
    return FakeInfraClient()


@pytest.fixture
def api_server() -> FakeApiServer:
    return FakeApiServer()


@pytest.fixture
def api_client(api_server: FakeApiServer) -> client.ApiClient:
    """Real API client whose HTTP layer is served by `api_server`."""
    api_client = client.ApiClient(client.Configuration())
    api_client.rest_client.request = api_server
    return api_client


@pytest.fixture
def rest_infra_client(
    api_client: client.ApiClient, logger: Logger
) -> InfraClusterClient:
    return InfraClusterClient(
        api_client=api_client,
        namespace="infra-ns",
        labels={"cluster": "tenant-a"},
        volume_prefix="pvc",
        logger=logger,
    )


@pytest.fixture
def enforcement() -> StorageClassEnforcement:
    return StorageClassEnforcement(allow_all=True, allow_default=True)


@pytest.fixture
def controller(
    infra_client: FakeInfraClient,
    enforcement: StorageClassEnforcement,
    logger: Logger,
) -> ControllerService:
    return ControllerService(
        client=infra_client,
        enforcement=enforcement,
        snapshot_class_mapping={},
        logger=logger,
    )


@pytest.fixture
def device_lister() -> FakeDeviceLister:
    return FakeDeviceLister()


@pytest.fixture
def fs_maker() -> FakeFsMaker:
    return FakeFsMaker()


@pytest.fixture
def mounter() -> FakeMounter:
    return FakeMounter()


@pytest.fixture
def resizer() -> FakeResizer:
    return FakeResizer()


@pytest.fixture
def node_service(
    device_lister: FakeDeviceLister,
    fs_maker: FakeFsMaker,
    mounter: FakeMounter,
    resizer: FakeResizer,
    logger: Logger,
) -> NodeService:
    return NodeService(
        node_id="infra-ns/vm-1",
        device_lister=device_lister,
        fs_maker=fs_maker,
        mounter=mounter,
        resizer=resizer,
        logger=logger,
    )
