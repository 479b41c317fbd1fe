"""CSI controller service.

Tenant volumes are DataVolumes in the infra cluster namespace: the CSI volume ID is
the DataVolume name and the DataVolume UID becomes the serial of the disk
hotplugged into the virtual machine running the tenant node. Bus and serial are
handed to the node service through the volume context.
"""

from logging import Logger

from kubevirt_csi import policy
from kubevirt_csi.clients.infra import InfraClusterClient
from kubevirt_csi.clients.tenant import INFRA_SNAPSHOT_CLASS_PARAMETER
from kubevirt_csi.csi import csi_pb2, csi_pb2_grpc
from kubevirt_csi.exceptions import (
    AbortedError,
    AlreadyExistsError,
    FailedPreconditionError,
    InvalidArgumentError,
    InvalidSnapshotError,
    NotFoundError,
    PermissionDeniedError,
    UnimplementedError,
)
from kubevirt_csi.models.enforcement import StorageClassEnforcement
from kubevirt_csi.models.node import InstanceRef
from kubevirt_csi.models.volume import (
    BUS_CONTEXT_KEY,
    SERIAL_CONTEXT_KEY,
    DiskBus,
    RemoteVolume,
    VolumeAttachment,
    VolumeSnapshot,
    VolumeSource,
    disk_name_for,
)
from kubevirt_csi.services.core import logged_rpc, require, validate_capability

STORAGE_CLASS_PARAMETER = "infraStorageClassName"
BUS_PARAMETER = "bus"

CAPABILITIES = (
    csi_pb2.ControllerServiceCapability.RPC.CREATE_DELETE_VOLUME,
    csi_pb2.ControllerServiceCapability.RPC.PUBLISH_UNPUBLISH_VOLUME,
    csi_pb2.ControllerServiceCapability.RPC.CREATE_DELETE_SNAPSHOT,
    csi_pb2.ControllerServiceCapability.RPC.LIST_SNAPSHOTS,
    csi_pb2.ControllerServiceCapability.RPC.CLONE_VOLUME,
)


def parse_bus(value: str) -> DiskBus:
    """Return the disk bus. An empty value means SCSI.

    Raises:
        InvalidArgumentError for unknown buses.

    """
    if value == "":
        return DiskBus.SCSI
    try:
        return DiskBus(value)
    except ValueError as e:
        valid = [i.value for i in DiskBus]
        raise InvalidArgumentError(f"Unknown bus {value}, valid values: {valid}") from e


def requested_size(capacity_range: csi_pb2.CapacityRange) -> int:
    """Return the size to provision, in bytes.

    Raises:
        InvalidArgumentError if the size is not positive or the range is empty.

    """
    required = capacity_range.required_bytes
    limit = capacity_range.limit_bytes
    if required < 0 or limit < 0:
        raise InvalidArgumentError("Capacity range must not be negative")
    if required > 0 and limit > 0 and limit < required:
        raise InvalidArgumentError(
            f"Capacity limit {limit} is lower than the required capacity {required}"
        )
    size = required or limit
    if size <= 0:
        raise InvalidArgumentError("Requested size must be greater than zero")
    return size


def to_csi_snapshot(snapshot: VolumeSnapshot) -> csi_pb2.Snapshot:
    item = csi_pb2.Snapshot(
        size_bytes=snapshot.restore_size_bytes,
        snapshot_id=snapshot.name,
        source_volume_id=snapshot.source_volume,
        ready_to_use=snapshot.ready_to_use,
    )
    if snapshot.creation_time is not None:
        item.creation_time.FromDatetime(snapshot.creation_time)
    return item


class ControllerService(csi_pb2_grpc.ControllerServicer):
    """Volume lifecycle against the infra cluster.

    Every operation is idempotent: the sidecars retry any request whose outcome
    they did not observe.
    """

    def __init__(
        self,
        *,
        client: InfraClusterClient,
        enforcement: StorageClassEnforcement,
        snapshot_class_mapping: dict[str, list[str]],
        logger: Logger,
    ) -> None:
        self.client = client
        self.enforcement = enforcement
        self.snapshot_class_mapping = snapshot_class_mapping
        self.logger = logger

    def register(self, server) -> None:
        csi_pb2_grpc.add_ControllerServicer_to_server(self, server)

    # Volumes

    def _check_storage_class(self, name: str) -> None:
        """Apply the enforcement rules to the requested infra storage class."""
        if policy.is_allowed(self.enforcement, name, is_cluster_default=name == ""):
            return
        if name != "" and self.enforcement.allow_default:
            if self.client.get_storage_class(name).is_default:
                return
        if name == "":
            raise PermissionDeniedError(
                "infraStorageClassName is required, the default storage class is "
                "not allowed"
            )
        raise PermissionDeniedError(
            f"infraStorageClassName {name} is not in the allowed list"
        )

    def _volume_source(self, request: csi_pb2.CreateVolumeRequest) -> VolumeSource:
        if not request.HasField("volume_content_source"):
            return VolumeSource()
        content_source = request.volume_content_source
        kind = content_source.WhichOneof("type")
        if kind == "snapshot":
            snapshot_id = content_source.snapshot.snapshot_id
            try:
                self.client.get_volume_snapshot(snapshot_id)
            except NotFoundError as e:
                raise NotFoundError(
                    f"source snapshot content {snapshot_id} not found"
                ) from e
            return VolumeSource(kind="snapshot", name=snapshot_id)
        if kind == "volume":
            volume_id = content_source.volume.volume_id
            try:
                self.client.get_data_volume(volume_id)
            except NotFoundError as e:
                raise NotFoundError(
                    f"source volume content {volume_id} not found"
                ) from e
            return VolumeSource(kind="pvc", name=volume_id)
        return VolumeSource()

    @logged_rpc
    def CreateVolume(self, request, context):
        require(request.name, "name")
        require(request.volume_capabilities, "volume capabilities")
        for capability in request.volume_capabilities:
            validate_capability(capability)
        size = requested_size(request.capacity_range)
        storage_class_name = request.parameters.get(STORAGE_CLASS_PARAMETER, "")
        bus = parse_bus(request.parameters.get(BUS_PARAMETER, ""))

        # No infra object may be touched before the enforcement rules passed.
        self._check_storage_class(storage_class_name)
        source = self._volume_source(request)

        try:
            volume = self.client.get_data_volume(request.name)
        except NotFoundError:
            volume = None

        if volume is not None:
            if volume.size_bytes != size:
                raise AlreadyExistsError(
                    "Requested storage size does not match existing size"
                )
            if (volume.storage_class_name or "") != storage_class_name:
                raise AlreadyExistsError(
                    "Requested storage class does not match existing storage class"
                )
            if volume.source != source:
                raise AlreadyExistsError(
                    "Requested content source does not match existing source"
                )
            self.logger.info("Data volume %s already exists", volume.name)
        else:
            volume = self.client.create_data_volume(
                RemoteVolume(
                    name=request.name,
                    namespace=self.client.namespace,
                    storage_class_name=storage_class_name or None,
                    size_bytes=size,
                    source=source,
                )
            )

        context_map = {BUS_CONTEXT_KEY: bus.value, SERIAL_CONTEXT_KEY: volume.uid}
        response = csi_pb2.CreateVolumeResponse(
            volume=csi_pb2.Volume(
                capacity_bytes=size,
                volume_id=volume.name,
                volume_context=context_map,
            )
        )
        if request.HasField("volume_content_source"):
            response.volume.content_source.CopyFrom(request.volume_content_source)
        return response

    @logged_rpc
    def DeleteVolume(self, request, context):
        require(request.volume_id, "volume id")
        self.client.delete_data_volume(request.volume_id)
        return csi_pb2.DeleteVolumeResponse()

    def _resolve_instance(self, node_id: str) -> InstanceRef:
        """Return the VMI running the tenant node with the given CSI node ID.

        Node IDs are namespace/name pairs. Older node services registered the VMI
        firmware UUID instead.
        """
        ref = InstanceRef.from_node_id(node_id)
        if ref is not None:
            if ref.namespace != self.client.namespace:
                msg = f"Node {node_id} is not in the infra cluster namespace "
                msg += self.client.namespace
                raise FailedPreconditionError(msg)
            return ref
        for instance in self.client.list_instances():
            uuid = instance.firmware_uuid or ""
            if uuid.lower() == node_id.lower():
                return InstanceRef(
                    namespace=instance.namespace or self.client.namespace,
                    name=instance.name,
                )
        raise NotFoundError(f"No virtual machine instance matches node {node_id}")

    @logged_rpc
    def ControllerPublishVolume(self, request, context):
        require(request.volume_id, "volume id")
        require(request.node_id, "node id")
        if not request.HasField("volume_capability"):
            raise InvalidArgumentError("volume capability missing in request")
        validate_capability(request.volume_capability)

        volume = self.client.get_data_volume(request.volume_id)
        instance = self._resolve_instance(request.node_id)
        attachment = VolumeAttachment.for_volume(
            volume.name,
            serial=request.volume_context.get(SERIAL_CONTEXT_KEY) or volume.uid,
            bus=parse_bus(request.volume_context.get(BUS_CONTEXT_KEY, "")),
        )
        self.client.attach_volume(
            instance.name, attachment, namespace=instance.namespace
        )
        return csi_pb2.ControllerPublishVolumeResponse()

    @logged_rpc
    def ControllerUnpublishVolume(self, request, context):
        require(request.volume_id, "volume id")
        require(request.node_id, "node id")
        try:
            instance = self._resolve_instance(request.node_id)
        except NotFoundError:
            self.logger.info(
                "Node %s not found, volume %s is detached",
                request.node_id,
                request.volume_id,
            )
            return csi_pb2.ControllerUnpublishVolumeResponse()
        self.client.detach_volume(
            instance.name,
            disk_name_for(request.volume_id),
            namespace=instance.namespace,
        )
        return csi_pb2.ControllerUnpublishVolumeResponse()

    @logged_rpc
    def ValidateVolumeCapabilities(self, request, context):
        require(request.volume_id, "volume id")
        require(request.volume_capabilities, "volume capabilities")
        self.client.get_data_volume(request.volume_id)
        for capability in request.volume_capabilities:
            try:
                validate_capability(capability)
            except InvalidArgumentError as e:
                return csi_pb2.ValidateVolumeCapabilitiesResponse(message=e.message)
        confirmed = csi_pb2.ValidateVolumeCapabilitiesResponse.Confirmed(
            volume_context=request.volume_context,
            volume_capabilities=request.volume_capabilities,
            parameters=request.parameters,
        )
        return csi_pb2.ValidateVolumeCapabilitiesResponse(confirmed=confirmed)

    @logged_rpc
    def ControllerGetCapabilities(self, request, context):
        return csi_pb2.ControllerGetCapabilitiesResponse(
            capabilities=[
                csi_pb2.ControllerServiceCapability(
                    rpc=csi_pb2.ControllerServiceCapability.RPC(type=i)
                )
                for i in CAPABILITIES
            ]
        )

    # Snapshots

    def _incompatible_snapshot_class(
        self, snapshot_class: str, storage_class: str, permitted: set[str]
    ) -> PermissionDeniedError:
        suggestions = sorted(
            {
                name
                for infra_name in permitted
                for name in self.snapshot_class_mapping.get(infra_name, [])
            }
        )
        if len(suggestions) == 0:
            return PermissionDeniedError(
                "unable to determine volume snapshot class name for snapshot "
                "creation, no valid snapshot classes found"
            )
        msg = f"volume snapshot class {snapshot_class} is not compatible with PVC "
        msg += f"with storage class {storage_class}, valid snapshot classes for this "
        msg += f"pvc are {suggestions}"
        return PermissionDeniedError(msg)

    def _resolve_snapshot_class(self, volume_id: str, requested: str) -> str | None:
        """Choose the infra volume snapshot class of a snapshot of the volume.

        The storage class of the volume must be allowed. When a mapping restricts
        its snapshot classes, both an explicitly requested class and a default one
        must belong to it.

        Returns:
            str | None: snapshot class name. None lets the infra cluster choose.

        """
        storage_class_name = self.client.get_storage_class_name_from_claim(volume_id)
        if storage_class_name == "":
            if not (self.enforcement.allow_all or self.enforcement.allow_default):
                raise PermissionDeniedError(
                    "unable to determine volume snapshot class name for snapshot "
                    "creation, and default not allowed"
                )
            return requested or None

        storage_class = self.client.get_storage_class(storage_class_name)
        if not policy.is_allowed(
            self.enforcement,
            storage_class.name,
            is_cluster_default=storage_class.is_default,
        ):
            raise PermissionDeniedError(
                f"Storage class {storage_class.name} of volume {volume_id} is not "
                "allowed"
            )

        permitted = policy.permitted_snapshot_classes(
            self.enforcement, storage_class.name
        )
        if permitted is None:
            return self.client.resolve_snapshot_class(
                storage_class.name, requested
            ).snapshot_class

        if requested == "":
            try:
                binding = self.client.resolve_snapshot_class(storage_class.name)
            except NotFoundError:
                binding = None
            if binding is not None and binding.snapshot_class in permitted:
                return binding.snapshot_class
            if len(permitted) != 1:
                raise self._incompatible_snapshot_class(
                    binding.snapshot_class if binding else "<default>",
                    storage_class.name,
                    permitted,
                )
            requested = next(iter(permitted))

        if requested not in permitted:
            raise self._incompatible_snapshot_class(
                requested, storage_class.name, permitted
            )
        return self.client.resolve_snapshot_class(
            storage_class.name, requested
        ).snapshot_class

    @logged_rpc
    def CreateSnapshot(self, request, context):
        require(request.name, "name")
        require(request.source_volume_id, "source volume id")

        try:
            snapshot = self.client.get_volume_snapshot(request.name)
        except NotFoundError:
            snapshot = None
        if snapshot is not None:
            if snapshot.source_volume != request.source_volume_id:
                msg = f"Snapshot {request.name} already exists with source volume "
                msg += snapshot.source_volume
                raise AlreadyExistsError(msg)
            self.logger.info("Volume snapshot %s already exists", snapshot.name)
            return csi_pb2.CreateSnapshotResponse(snapshot=to_csi_snapshot(snapshot))

        try:
            self.client.get_data_volume(request.source_volume_id)
        except NotFoundError as e:
            raise NotFoundError(
                f"Source volume {request.source_volume_id} not found"
            ) from e

        snapshot_class = self._resolve_snapshot_class(
            request.source_volume_id,
            request.parameters.get(INFRA_SNAPSHOT_CLASS_PARAMETER, ""),
        )
        snapshot = self.client.create_volume_snapshot(
            request.name, request.source_volume_id, snapshot_class
        )
        return csi_pb2.CreateSnapshotResponse(snapshot=to_csi_snapshot(snapshot))

    @logged_rpc
    def DeleteSnapshot(self, request, context):
        require(request.snapshot_id, "snapshot id")
        self.client.delete_volume_snapshot(request.snapshot_id)
        return csi_pb2.DeleteSnapshotResponse()

    @logged_rpc
    def ListSnapshots(self, request, context):
        if request.max_entries < 0:
            raise InvalidArgumentError("max_entries must not be negative")

        if request.snapshot_id:
            try:
                snapshots = [self.client.get_volume_snapshot(request.snapshot_id)]
            except (NotFoundError, InvalidSnapshotError):
                snapshots = []
        else:
            snapshots = self.client.list_volume_snapshots()
        if request.source_volume_id:
            snapshots = [
                i for i in snapshots if i.source_volume == request.source_volume_id
            ]
        snapshots.sort(key=lambda x: x.name)

        start = 0
        if request.starting_token:
            try:
                start = int(request.starting_token)
            except ValueError as e:
                raise AbortedError(
                    f"Invalid starting token {request.starting_token}"
                ) from e
            if start < 0 or start > len(snapshots):
                raise AbortedError(f"Invalid starting token {request.starting_token}")
        end = len(snapshots)
        if request.max_entries > 0:
            end = min(end, start + request.max_entries)

        return csi_pb2.ListSnapshotsResponse(
            entries=[
                csi_pb2.ListSnapshotsResponse.Entry(snapshot=to_csi_snapshot(i))
                for i in snapshots[start:end]
            ],
            next_token=str(end) if end < len(snapshots) else "",
        )

    # Not supported

    @logged_rpc
    def ListVolumes(self, request, context):
        raise UnimplementedError("ListVolumes is not supported")

    @logged_rpc
    def GetCapacity(self, request, context):
        raise UnimplementedError("GetCapacity is not supported")

    @logged_rpc
    def ControllerExpandVolume(self, request, context):
        raise UnimplementedError("ControllerExpandVolume is not supported")

    @logged_rpc
    def ControllerGetVolume(self, request, context):
        raise UnimplementedError("ControllerGetVolume is not supported")
