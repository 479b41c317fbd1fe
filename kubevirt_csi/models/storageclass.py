"""Models for storage classes, volume snapshot classes and their bindings."""

from typing import Annotated

from pydantic import BaseModel, Field

from kubevirt_csi.models.core import KubeObject


class StorageClass(KubeObject):
    """Model with StorageClass public and restricted attributes."""

    is_default: Annotated[
        bool,
        Field(default=False, description="StorageClass is the cluster default one"),
    ]
    provisioner: Annotated[
        str,
        Field(
            description="A provisioner determines what volume plugin is used for "
            "provisioning PVs"
        ),
    ]


class VolumeSnapshotClass(KubeObject):
    """Model with the VolumeSnapshotClass attributes used by the driver."""

    driver: Annotated[
        str, Field(description="CSI driver handling snapshots of this class")
    ]
    is_default: Annotated[
        bool,
        Field(
            default=False,
            description="VolumeSnapshotClass is the default one for its driver",
        ),
    ]
    parameters: Annotated[
        dict[str, str],
        Field(default_factory=dict, description="Driver specific parameters"),
    ]


class SnapshotClassBinding(BaseModel):
    """Snapshot class backing the snapshots of volumes of a storage class."""

    storage_class: Annotated[str, Field(description="StorageClass name")]
    provisioner: Annotated[str, Field(description="StorageClass provisioner")]
    snapshot_class: Annotated[
        str, Field(description="VolumeSnapshotClass with the same provisioner")
    ]
