"""Assembly of the CSI services from the settings."""

from logging import Logger

from pydantic import BaseModel, ConfigDict

from kubevirt_csi.clients.core import create_api_client
from kubevirt_csi.clients.infra import InfraClusterClient
from kubevirt_csi.clients.tenant import TenantClusterClient
from kubevirt_csi.config import Settings
from kubevirt_csi.devices import (
    FsResizer,
    LsblkDeviceLister,
    MkfsFsMaker,
    SystemMounter,
)
from kubevirt_csi.loaders import load_enforcement
from kubevirt_csi.node_identity import resolve_node_id
from kubevirt_csi.services.controller import ControllerService
from kubevirt_csi.services.identity import IdentityService
from kubevirt_csi.services.node import NodeService


class Driver(BaseModel):
    """Servicers to expose. Controller and node are None when not served."""

    identity: IdentityService
    controller: ControllerService | None = None
    node: NodeService | None = None

    model_config = ConfigDict(arbitrary_types_allowed=True)


def create_infra_client(settings: Settings, *, logger: Logger) -> InfraClusterClient:
    api_client = create_api_client(settings.INFRA_CLUSTER_KUBECONFIG, logger=logger)
    return InfraClusterClient(
        api_client=api_client,
        namespace=settings.INFRA_CLUSTER_NAMESPACE,
        labels=settings.infra_labels,
        volume_prefix=settings.VOLUME_PREFIX,
        logger=logger,
    )


def create_tenant_client(settings: Settings, *, logger: Logger) -> TenantClusterClient:
    api_client = create_api_client(settings.TENANT_CLUSTER_KUBECONFIG, logger=logger)
    return TenantClusterClient(api_client=api_client, logger=logger)


def resolve_tenant_node_id(
    tenant: TenantClusterClient, node_name: str, *, logger: Logger
) -> str:
    """Return the node ID of the tenant node the node service runs on."""
    node = tenant.get_node(node_name)
    node_id = resolve_node_id(node.provider_id, node.annotations)
    logger.info("Node %s runs on infra VM %s", node_name, node_id)
    return node_id


def create_driver(settings: Settings, *, logger: Logger) -> Driver:
    """Build the clients and the services enabled by the settings.

    The controller talks to both clusters: it manages the infra volumes and reads
    the tenant volume snapshot classes. The node service only needs the tenant
    cluster to find its node ID.

    Raises:
        InvalidYamlError if the storage class enforcement is not valid.
        CSIError subclasses if the tenant node can't be identified.

    """
    tenant = create_tenant_client(settings, logger=logger)
    controller = None
    node = None

    if settings.RUN_CONTROLLER_SERVICE:
        infra = create_infra_client(settings, logger=logger)
        enforcement = load_enforcement(
            settings.INFRA_STORAGE_CLASS_ENFORCEMENT, logger=logger
        )
        mapping = tenant.build_snapshot_class_mapping(settings.DRIVER_NAME)
        controller = ControllerService(
            client=infra,
            enforcement=enforcement,
            snapshot_class_mapping=mapping,
            logger=logger,
        )
        identity_client = infra
    else:
        identity_client = tenant

    if settings.RUN_NODE_SERVICE:
        node_id = resolve_tenant_node_id(tenant, settings.NODE_NAME, logger=logger)
        node = NodeService(
            node_id=node_id,
            device_lister=LsblkDeviceLister(logger=logger),
            fs_maker=MkfsFsMaker(logger=logger),
            mounter=SystemMounter(logger=logger),
            resizer=FsResizer(logger=logger),
            logger=logger,
        )

    identity = IdentityService(
        name=settings.DRIVER_NAME, cluster_client=identity_client, logger=logger
    )
    return Driver(identity=identity, controller=controller, node=node)
