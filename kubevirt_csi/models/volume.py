"""Models for infra cluster volumes, hotplug attachments and snapshots."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

from kubevirt_csi.models.core import KubeObject


class DiskBus(str, Enum):
    """Buses a hotplugged disk can be attached to."""

    VIRTIO = "virtio"
    SATA = "sata"
    SCSI = "scsi"
    USB = "usb"


class VolumeSource(BaseModel):
    """Content a new volume is populated with."""

    kind: Annotated[
        Literal["blank", "snapshot", "pvc"],
        Field(default="blank", description="Source type"),
    ]
    name: Annotated[
        str, Field(default="", description="Source snapshot or claim name")
    ]

    def to_spec(self, namespace: str) -> dict[str, Any]:
        """Return the DataVolume spec.source content."""
        if self.kind == "blank":
            return {"blank": {}}
        return {self.kind: {"name": self.name, "namespace": namespace}}


class RemoteVolume(KubeObject):
    """Infra cluster DataVolume backing a tenant volume.

    The UID becomes the hardware serial of the hotplugged disk.
    """

    storage_class_name: Annotated[
        str | None,
        Field(default=None, description="Infra storage class. None means default"),
    ]
    size_bytes: Annotated[int, Field(ge=0, description="Requested size in bytes")]
    source: Annotated[
        VolumeSource,
        Field(default_factory=VolumeSource, description="Volume content source"),
    ]


class VolumeAttachment(BaseModel):
    """Hotplug relation between a RemoteVolume and a virtual machine instance."""

    disk_name: Annotated[str, Field(description="Disk and hotplug volume name")]
    volume_name: Annotated[str, Field(description="DataVolume name")]
    serial: Annotated[str, Field(description="Disk hardware serial")]
    bus: Annotated[DiskBus, Field(default=DiskBus.SCSI, description="Disk bus")]

    @classmethod
    def for_volume(cls, volume_name: str, *, serial: str, bus: DiskBus):
        """Attachment of the given volume with its deterministic disk name."""
        return cls(
            disk_name=disk_name_for(volume_name),
            volume_name=volume_name,
            serial=serial,
            bus=bus,
        )

    def to_add_volume_options(self) -> dict[str, Any]:
        """Body of the VMI addvolume subresource request."""
        return {
            "name": self.disk_name,
            "disk": {
                "name": self.disk_name,
                "serial": self.serial,
                "disk": {"bus": self.bus.value},
            },
            "volumeSource": {"dataVolume": {"name": self.volume_name}},
        }


class VolumeSnapshot(KubeObject):
    """Infra cluster VolumeSnapshot of a DataVolume's claim."""

    source_volume: Annotated[str, Field(description="Source claim name")]
    snapshot_class: Annotated[
        str | None,
        Field(default=None, description="VolumeSnapshotClass. None means default"),
    ]
    creation_time: Annotated[
        datetime | None, Field(default=None, description="Snapshot creation time")
    ]
    ready_to_use: Annotated[
        bool, Field(default=False, description="Snapshot can be restored")
    ]
    restore_size_bytes: Annotated[
        int, Field(default=0, ge=0, description="Minimum size to restore it")
    ]


BUS_CONTEXT_KEY = "bus"
SERIAL_CONTEXT_KEY = "serial"


def disk_name_for(volume_name: str) -> str:
    return f"disk-{volume_name}"
