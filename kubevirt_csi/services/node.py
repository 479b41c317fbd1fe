"""CSI node service.

The disk hotplugged by the controller shows up as a block device whose serial is
the DataVolume UID, received in the volume context.
"""

import os
from logging import Logger

from kubevirt_csi.csi import csi_pb2, csi_pb2_grpc
from kubevirt_csi.devices import (
    SUPPORTED_FILESYSTEMS,
    DeviceLister,
    FsMaker,
    Mounter,
    Resizer,
)
from kubevirt_csi.exceptions import (
    FailedPreconditionError,
    InternalError,
    InvalidArgumentError,
    NotFoundError,
)
from kubevirt_csi.models.node import BlockDevice
from kubevirt_csi.models.volume import SERIAL_CONTEXT_KEY
from kubevirt_csi.services.core import logged_rpc, require, validate_capability

DEFAULT_FS_TYPE = "ext4"

CAPABILITIES = (
    csi_pb2.NodeServiceCapability.RPC.STAGE_UNSTAGE_VOLUME,
    csi_pb2.NodeServiceCapability.RPC.EXPAND_VOLUME,
    csi_pb2.NodeServiceCapability.RPC.GET_VOLUME_STATS,
)


def required_capability(request) -> csi_pb2.VolumeCapability:
    if not request.HasField("volume_capability"):
        raise InvalidArgumentError("volume capability missing in request")
    validate_capability(request.volume_capability)
    return request.volume_capability


def filesystem_type(capability: csi_pb2.VolumeCapability) -> str:
    """Return the requested filesystem, ext4 when not given.

    Raises:
        InvalidArgumentError for unsupported filesystems.

    """
    fs_type = capability.mount.fs_type or DEFAULT_FS_TYPE
    if fs_type not in SUPPORTED_FILESYSTEMS:
        raise InvalidArgumentError(
            f"Filesystem {fs_type} not supported, only xfs and ext4"
        )
    return fs_type


class NodeService(csi_pb2_grpc.NodeServicer):
    """Stage and publish the volumes attached to this node's virtual machine."""

    def __init__(
        self,
        *,
        node_id: str,
        device_lister: DeviceLister,
        fs_maker: FsMaker,
        mounter: Mounter,
        resizer: Resizer,
        logger: Logger,
    ) -> None:
        self.node_id = node_id
        self.device_lister = device_lister
        self.fs_maker = fs_maker
        self.mounter = mounter
        self.resizer = resizer
        self.logger = logger

    def register(self, server) -> None:
        csi_pb2_grpc.add_NodeServicer_to_server(self, server)

    def find_device(self, serial: str) -> BlockDevice:
        """Return the only block device with the given serial.

        Raises:
            FailedPreconditionError if no device or more than one device match.

        """
        devices = [
            i for i in self.device_lister.list_block_devices() if i.serial == serial
        ]
        if len(devices) == 0:
            raise FailedPreconditionError(
                f"No block device with serial {serial} found, the disk may not be "
                "attached yet"
            )
        if len(devices) > 1:
            paths = [i.path for i in devices]
            msg = f"Multiple block devices with serial {serial}: {paths}"
            self.logger.error(msg)
            raise FailedPreconditionError(msg)
        return devices[0]

    @logged_rpc
    def NodeStageVolume(self, request, context):
        require(request.volume_id, "volume id")
        require(request.staging_target_path, "staging target path")
        capability = required_capability(request)
        serial = request.volume_context.get(SERIAL_CONTEXT_KEY, "")
        require(serial, "serial volume context")

        is_block = capability.HasField("block")
        fs_type = "" if is_block else filesystem_type(capability)
        device = self.find_device(serial)
        if is_block:
            return csi_pb2.NodeStageVolumeResponse()
        if device.fstype != "":
            self.logger.info(
                "Device %s already has a %s filesystem", device.path, device.fstype
            )
            return csi_pb2.NodeStageVolumeResponse()

        self.fs_maker.make_filesystem(device.path, fs_type)
        return csi_pb2.NodeStageVolumeResponse()

    @logged_rpc
    def NodeUnstageVolume(self, request, context):
        require(request.volume_id, "volume id")
        require(request.staging_target_path, "staging target path")
        return csi_pb2.NodeUnstageVolumeResponse()

    def _create_target(self, target: str, *, is_file: bool) -> None:
        try:
            if is_file:
                os.makedirs(os.path.dirname(target), mode=0o750, exist_ok=True)
                if not os.path.lexists(target):
                    os.close(os.open(target, os.O_CREAT | os.O_WRONLY, 0o640))
            else:
                os.makedirs(target, mode=0o750, exist_ok=True)
        except OSError as e:
            raise InternalError(f"Failed to create target {target}: {e!s}") from e

    def _resize(self, device_path: str, mount_path: str) -> None:
        """Grow the filesystem when the device was expanded."""
        if self.resizer.need_resize(device_path, mount_path):
            self.resizer.resize(device_path, mount_path)

    @logged_rpc
    def NodePublishVolume(self, request, context):
        require(request.volume_id, "volume id")
        require(request.target_path, "target path")
        capability = required_capability(request)
        serial = request.volume_context.get(SERIAL_CONTEXT_KEY, "")
        require(serial, "serial volume context")

        is_block = capability.HasField("block")
        fs_type = "" if is_block else filesystem_type(capability)
        device = self.find_device(serial)
        target = request.target_path

        if self.mounter.path_exists(target) and self.mounter.is_mount_point(target):
            self.logger.info("Target %s already mounted", target)
            if not is_block:
                self._resize(device.path, target)
            return csi_pb2.NodePublishVolumeResponse()

        self._create_target(target, is_file=is_block)
        if is_block:
            options = ["bind"]
        else:
            if not capability.mount.fs_type and device.fstype:
                fs_type = device.fstype
            options = list(capability.mount.mount_flags)
            if fs_type == "xfs":
                options.append("nouuid")
        if request.readonly:
            options.append("ro")
        self.mounter.mount(device.path, target, fs_type, options)
        if not is_block:
            self._resize(device.path, target)
        return csi_pb2.NodePublishVolumeResponse()

    @logged_rpc
    def NodeUnpublishVolume(self, request, context):
        require(request.volume_id, "volume id")
        require(request.target_path, "target path")
        target = request.target_path
        if not self.mounter.path_exists(target):
            self.logger.info("Target %s does not exist", target)
            return csi_pb2.NodeUnpublishVolumeResponse()

        if self.mounter.is_mount_point(target):
            self.mounter.unmount(target)
        try:
            if os.path.isdir(target) and not os.path.islink(target):
                os.rmdir(target)
            else:
                os.remove(target)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise InternalError(f"Failed to remove target {target}: {e!s}") from e
        return csi_pb2.NodeUnpublishVolumeResponse()

    @logged_rpc
    def NodeGetVolumeStats(self, request, context):
        require(request.volume_id, "volume id")
        require(request.volume_path, "volume path")
        path = request.volume_path
        if not self.mounter.path_exists(path):
            raise NotFoundError(f"Volume path {path} not found")

        if self.mounter.is_block_device(path):
            size = self.mounter.block_device_size(path)
            return csi_pb2.NodeGetVolumeStatsResponse(
                usage=[
                    csi_pb2.VolumeUsage(total=size, unit=csi_pb2.VolumeUsage.BYTES)
                ]
            )

        stats = self.mounter.filesystem_stats(path)
        return csi_pb2.NodeGetVolumeStatsResponse(
            usage=[
                csi_pb2.VolumeUsage(
                    available=stats.available_bytes,
                    total=stats.total_bytes,
                    used=stats.used_bytes,
                    unit=csi_pb2.VolumeUsage.BYTES,
                ),
                csi_pb2.VolumeUsage(
                    available=stats.available_inodes,
                    total=stats.total_inodes,
                    used=stats.used_inodes,
                    unit=csi_pb2.VolumeUsage.INODES,
                ),
            ]
        )

    @logged_rpc
    def NodeGetInfo(self, request, context):
        return csi_pb2.NodeGetInfoResponse(node_id=self.node_id)

    @logged_rpc
    def NodeGetCapabilities(self, request, context):
        return csi_pb2.NodeGetCapabilitiesResponse(
            capabilities=[
                csi_pb2.NodeServiceCapability(
                    rpc=csi_pb2.NodeServiceCapability.RPC(type=i)
                )
                for i in CAPABILITIES
            ]
        )

    @logged_rpc
    def NodeExpandVolume(self, request, context):
        require(request.volume_id, "volume id")
        require(request.volume_path, "volume path")
        if request.volume_capability.HasField("block"):
            self.logger.info(
                "NodeExpandVolume is not needed for block volume %s",
                request.volume_id,
            )
            return csi_pb2.NodeExpandVolumeResponse()

        device_path = self.resizer.mounted_device(request.volume_path)
        self._resize(device_path, request.volume_path)
        return csi_pb2.NodeExpandVolumeResponse()
