"""Models for the infra storage class enforcement document."""

from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field


class StorageSnapshotMapping(BaseModel):
    """Storage classes whose volumes may use only the listed snapshot classes."""

    model_config = ConfigDict(populate_by_name=True)

    storage_classes: Annotated[
        list[str],
        Field(
            default_factory=list,
            alias="storageClasses",
            description="Infra storage class names",
        ),
    ]
    volume_snapshot_classes: Annotated[
        list[str],
        Field(
            default_factory=list,
            alias="volumeSnapshotClasses",
            description="Infra volume snapshot class names permitted for these "
            "storage classes",
        ),
    ]


class StorageClassEnforcement(BaseModel):
    """Rules restricting the infra storage classes tenants may use.

    Attributes:
    ----------
        allow_all (bool): Any storage class is allowed
        allow_default (bool): The infra cluster default storage class is allowed
        allow_list (list of str): Explicitly allowed storage classes
        storage_snapshot_mapping (list of StorageSnapshotMapping): Snapshot classes
            permitted for given storage classes
    """

    model_config = ConfigDict(populate_by_name=True)

    allow_all: Annotated[
        bool,
        Field(
            default=False,
            alias="allowAll",
            description="Allow any infra storage class",
        ),
    ]
    allow_default: Annotated[
        bool,
        Field(
            default=False,
            alias="allowDefault",
            description="Allow the infra cluster default storage class",
        ),
    ]
    allow_list: Annotated[
        list[str],
        Field(
            default_factory=list,
            alias="allowList",
            description="Allowed infra storage class names",
        ),
    ]
    storage_snapshot_mapping: Annotated[
        list[StorageSnapshotMapping],
        Field(
            default_factory=list,
            alias="storageSnapshotMapping",
            description="Storage class to volume snapshot class restrictions",
        ),
    ]
