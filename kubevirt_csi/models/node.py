"""Models for tenant nodes, infra virtual machine instances and block devices."""

from typing import Annotated

from pydantic import BaseModel, Field

from kubevirt_csi.models.core import KubeObject


class VolumeStatus(BaseModel):
    """Entry of a VirtualMachineInstance status.volumeStatus list."""

    name: Annotated[str, Field(description="Volume name")]
    hotplug: Annotated[
        bool, Field(default=False, description="Volume has been hotplugged")
    ]


class ComputeInstance(KubeObject):
    """Infra cluster VirtualMachineInstance running a tenant node."""

    firmware_uuid: Annotated[
        str | None, Field(default=None, description="spec.domain.firmware.uuid")
    ]
    volumes: Annotated[
        list[str], Field(default_factory=list, description="spec.volumes names")
    ]
    volume_statuses: Annotated[
        list[VolumeStatus],
        Field(default_factory=list, description="status.volumeStatus"),
    ]

    def get_volume_status(self, name: str) -> VolumeStatus | None:
        for status in self.volume_statuses:
            if status.name == name:
                return status
        return None


class InstanceRef(BaseModel):
    """Namespace and name of a VirtualMachineInstance."""

    namespace: Annotated[str, Field(description="VMI namespace")]
    name: Annotated[str, Field(description="VMI name")]

    @classmethod
    def from_node_id(cls, node_id: str) -> "InstanceRef | None":
        """Parse a namespace/name node ID. Return None for other formats."""
        namespace, sep, name = node_id.partition("/")
        if sep == "" or namespace == "" or name == "" or "/" in name:
            return None
        return cls(namespace=namespace, name=name)


class NodeInfo(KubeObject):
    """Tenant cluster Node attributes used to resolve its identity."""

    provider_id: Annotated[
        str, Field(default="", description="Node spec.providerID")
    ]


class VolumeStats(BaseModel):
    """Usage of a mounted filesystem."""

    total_bytes: Annotated[int, Field(default=0, ge=0)]
    available_bytes: Annotated[int, Field(default=0, ge=0)]
    used_bytes: Annotated[int, Field(default=0, ge=0)]
    total_inodes: Annotated[int, Field(default=0, ge=0)]
    available_inodes: Annotated[int, Field(default=0, ge=0)]
    used_inodes: Annotated[int, Field(default=0, ge=0)]


class BlockDevice(BaseModel):
    """Block device visible on the node."""

    serial: Annotated[str, Field(default="", description="Hardware serial")]
    path: Annotated[str, Field(description="Device path, e.g. /dev/sdb")]
    fstype: Annotated[
        str, Field(default="", description="Detected filesystem. Empty if none")
    ]
