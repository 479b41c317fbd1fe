"""Decisions on the infra storage and snapshot classes tenants may use."""

from kubevirt_csi.models.enforcement import StorageClassEnforcement


def is_allowed(
    enforcement: StorageClassEnforcement,
    storage_class_name: str,
    *,
    is_cluster_default: bool,
) -> bool:
    """Check whether volumes may be created with the given infra storage class.

    Args:
        enforcement (StorageClassEnforcement): operator defined rules.
        storage_class_name (str): requested storage class. Empty string means the
            infra cluster default one.
        is_cluster_default (bool): the storage class is the infra cluster default.

    Returns:
        bool: True if the storage class may be used.

    """
    if enforcement.allow_all:
        return True
    if storage_class_name != "" and storage_class_name in enforcement.allow_list:
        return True
    return enforcement.allow_default and is_cluster_default


def permitted_snapshot_classes(
    enforcement: StorageClassEnforcement, storage_class_name: str
) -> set[str] | None:
    """Return the snapshot classes volumes of the given storage class may use.

    A storage class may appear in more than one mapping: the permitted snapshot
    classes are the union of all of them.

    Args:
        enforcement (StorageClassEnforcement): operator defined rules.
        storage_class_name (str): infra storage class name.

    Returns:
        set of str | None: permitted snapshot class names. None when no mapping
            mentions the storage class.

    """
    permitted = None
    for mapping in enforcement.storage_snapshot_mapping:
        if storage_class_name in mapping.storage_classes:
            if permitted is None:
                permitted = set()
            permitted.update(mapping.volume_snapshot_classes)
    return permitted
