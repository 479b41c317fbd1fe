from kubevirt_csi.csi import csi_pb2

SINGLE_WRITER = csi_pb2.VolumeCapability.AccessMode.SINGLE_NODE_WRITER


def mount_capability(
    fs_type: str = "", mount_flags: list[str] | None = None, mode=SINGLE_WRITER
) -> csi_pb2.VolumeCapability:
    return csi_pb2.VolumeCapability(
        mount=csi_pb2.VolumeCapability.MountVolume(
            fs_type=fs_type, mount_flags=mount_flags or []
        ),
        access_mode=csi_pb2.VolumeCapability.AccessMode(mode=mode),
    )


def block_capability(mode=SINGLE_WRITER) -> csi_pb2.VolumeCapability:
    return csi_pb2.VolumeCapability(
        block=csi_pb2.VolumeCapability.BlockVolume(),
        access_mode=csi_pb2.VolumeCapability.AccessMode(mode=mode),
    )
