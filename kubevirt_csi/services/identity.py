"""CSI identity service."""

from importlib.metadata import version
from logging import Logger

from google.protobuf.wrappers_pb2 import BoolValue

from kubevirt_csi.clients.core import ClusterClient
from kubevirt_csi.csi import csi_pb2, csi_pb2_grpc
from kubevirt_csi.exceptions import CSIError, FailedPreconditionError
from kubevirt_csi.services.core import logged_rpc

VENDOR_VERSION = version("kubevirt-csi-driver")


class IdentityService(csi_pb2_grpc.IdentityServicer):
    """Plugin information and health.

    Readiness is the reachability of the cluster the driver depends on: the infra
    cluster for the controller, the tenant cluster for a node only deployment.
    """

    def __init__(
        self, *, name: str, cluster_client: ClusterClient, logger: Logger
    ) -> None:
        self.name = name
        self.cluster_client = cluster_client
        self.logger = logger

    def register(self, server) -> None:
        csi_pb2_grpc.add_IdentityServicer_to_server(self, server)

    @logged_rpc
    def GetPluginInfo(self, request, context):
        return csi_pb2.GetPluginInfoResponse(
            name=self.name, vendor_version=VENDOR_VERSION
        )

    @logged_rpc
    def GetPluginCapabilities(self, request, context):
        service = csi_pb2.PluginCapability.Service(
            type=csi_pb2.PluginCapability.Service.CONTROLLER_SERVICE
        )
        return csi_pb2.GetPluginCapabilitiesResponse(
            capabilities=[csi_pb2.PluginCapability(service=service)]
        )

    @logged_rpc
    def Probe(self, request, context):
        try:
            self.cluster_client.ping()
        except CSIError as e:
            msg = f"{self.cluster_client.cluster} cluster not reachable: {e.message}"
            raise FailedPreconditionError(msg) from e
        return csi_pb2.ProbeResponse(ready=BoolValue(value=True))
