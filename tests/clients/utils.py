from typing import Any

from kubernetes import client

from kubevirt_csi.clients.infra import DEFAULT_STORAGE_CLASS_ANNOTATION

LABELS = {"cluster": "tenant-a"}


def data_volume_dict(
    name: str,
    *,
    size: str = "3Gi",
    storage_class: str | None = "infra-storage",
    labels: dict[str, str] | None = None,
    source: dict[str, Any] | None = None,
) -> dict[str, Any]:
    storage = {"resources": {"requests": {"storage": size}}}
    if storage_class is not None:
        storage["storageClassName"] = storage_class
    return {
        "metadata": {
            "name": name,
            "namespace": "infra-ns",
            "uid": "uid-" + name,
            "labels": LABELS if labels is None else labels,
        },
        "spec": {"storage": storage, "source": source or {"blank": {}}},
    }


def vmi_dict(
    name: str,
    *,
    firmware_uuid: str | None = None,
    volumes: list[str] | None = None,
    volume_status: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    spec = {"volumes": [{"name": i} for i in volumes or []]}
    if firmware_uuid is not None:
        spec["domain"] = {"firmware": {"uuid": firmware_uuid}}
    return {
        "metadata": {"name": name, "namespace": "infra-ns"},
        "spec": spec,
        "status": {"volumeStatus": volume_status or []},
    }


def snapshot_class_dict(
    name: str, driver: str, *, is_default: bool = False, parameters=None
) -> dict[str, Any]:
    annotations = {}
    if is_default:
        annotations["snapshot.storage.kubernetes.io/is-default-class"] = "true"
    return {
        "metadata": {"name": name, "annotations": annotations},
        "driver": driver,
        "parameters": parameters or {},
    }


def snapshot_dict(name: str, source: str, *, labels=None) -> dict[str, Any]:
    return {
        "metadata": {
            "name": name,
            "namespace": "infra-ns",
            "labels": LABELS if labels is None else labels,
        },
        "spec": {"source": {"persistentVolumeClaimName": source}},
        "status": {
            "creationTime": "2024-05-01T10:00:00Z",
            "readyToUse": True,
            "restoreSize": "1Gi",
        },
    }


def storage_class(
    name: str, provisioner: str = "csi.infra.io", *, is_default: bool = False
) -> client.V1StorageClass:
    annotations = {}
    if is_default:
        annotations[DEFAULT_STORAGE_CLASS_ANNOTATION] = "true"
    return client.V1StorageClass(
        metadata=client.V1ObjectMeta(name=name, annotations=annotations),
        provisioner=provisioner,
    )
