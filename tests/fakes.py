"""In-memory replacements of the infra cluster and of the node capabilities."""

import json
import threading
from typing import Any
from urllib.parse import urlparse
from uuid import uuid4

from kubernetes.client.exceptions import ApiException

from kubevirt_csi.devices import DeviceLister, FsMaker, Mounter, Resizer
from kubevirt_csi.exceptions import (
    FailedPreconditionError,
    InvalidArgumentError,
    NotFoundError,
)
from kubevirt_csi.models.node import BlockDevice, ComputeInstance, VolumeStats
from kubevirt_csi.models.storageclass import (
    SnapshotClassBinding,
    StorageClass,
    VolumeSnapshotClass,
)
from kubevirt_csi.models.volume import RemoteVolume, VolumeAttachment, VolumeSnapshot


class FakeHTTPResponse:
    """Response of a stubbed `rest_client.request`."""

    def __init__(self, status: int = 200, body: Any = None) -> None:
        self.status = status
        self.reason = "OK"
        self.data = b"" if body is None else json.dumps(body).encode()
        self.headers = {"Content-Type": "application/json"}

    def read(self) -> bytes:
        return self.data

    def getheader(self, name: str, default: str | None = None) -> str | None:
        headers = {k.lower(): v for k, v in self.headers.items()}
        return headers.get(name.lower(), default)

    def getheaders(self) -> dict[str, str]:
        return self.headers


class FakeApiServer:
    """Replacement of `ApiClient.rest_client.request` serving objects by path.

    GET returns the object stored at the path, DELETE removes it and PUT records
    the body. Paths listed in `errors` fail with the given HTTP status.
    """

    def __init__(self) -> None:
        self.objects: dict[str, dict[str, Any]] = {}
        self.errors: dict[str, int] = {}
        self.requests: list[tuple[str, str, Any]] = []
        self.lock = threading.Lock()

    def __call__(self, method: str, url: str, headers=None, body=None, **kwargs):
        path = urlparse(url).path
        with self.lock:
            self.requests.append((method, path, body))
            if path in self.errors:
                raise ApiException(status=self.errors[path], reason="Failure")
            if method == "PUT":
                return FakeHTTPResponse(202)
            if path not in self.objects:
                raise ApiException(status=404, reason="Not Found")
            if method == "DELETE":
                return FakeHTTPResponse(200, self.objects.pop(path))
            return FakeHTTPResponse(200, self.objects[path])

    def calls(self, method: str) -> list[tuple[str, Any]]:
        return [(path, body) for m, path, body in self.requests if m == method]


class FakeInfraClient:
    """Infra cluster client keeping its objects in dicts.

    Mirrors the InfraClusterClient methods used by the controller service. The
    claim of a volume has the volume's storage class.
    """

    cluster = "infra"

    def __init__(self, namespace: str = "infra-ns") -> None:
        self.namespace = namespace
        self.storage_classes: dict[str, StorageClass] = {}
        self.snapshot_classes: dict[str, VolumeSnapshotClass] = {}
        self.volumes: dict[str, RemoteVolume] = {}
        self.snapshots: dict[str, VolumeSnapshot] = {}
        self.instances: dict[str, ComputeInstance] = {}
        self.attached: dict[str, list[VolumeAttachment]] = {}
        self.detached: list[tuple[str, str]] = []
        self.created_volumes: list[RemoteVolume] = []
        self.created_snapshots: list[tuple[str, str, str | None]] = []

    def ping(self) -> None:
        pass

    def add_storage_class(
        self, name: str, provisioner: str = "csi.infra.io", *, is_default=False
    ) -> StorageClass:
        sc = StorageClass(name=name, provisioner=provisioner, is_default=is_default)
        self.storage_classes[name] = sc
        return sc

    def add_snapshot_class(
        self, name: str, driver: str = "csi.infra.io", *, is_default=False
    ) -> VolumeSnapshotClass:
        vsc = VolumeSnapshotClass(name=name, driver=driver, is_default=is_default)
        self.snapshot_classes[name] = vsc
        return vsc

    def add_instance(self, name: str, firmware_uuid: str | None = None):
        instance = ComputeInstance(
            name=name, namespace=self.namespace, firmware_uuid=firmware_uuid
        )
        self.instances[name] = instance
        return instance

    def get_storage_class(self, name: str) -> StorageClass:
        if name == "":
            defaults = [i for i in self.storage_classes.values() if i.is_default]
            if len(defaults) == 0:
                raise NotFoundError("No default storage class in the infra cluster")
            if len(defaults) > 1:
                raise FailedPreconditionError("Multiple default storage classes")
            return defaults[0]
        if name not in self.storage_classes:
            raise NotFoundError(f"Storage class {name} not found")
        return self.storage_classes[name]

    def resolve_snapshot_class(
        self, storage_class_name: str, requested: str = ""
    ) -> SnapshotClassBinding:
        storage_class = self.get_storage_class(storage_class_name)
        provisioner = storage_class.provisioner
        if requested != "":
            if requested not in self.snapshot_classes:
                raise NotFoundError(f"Volume snapshot class {requested} not found")
            if self.snapshot_classes[requested].driver != provisioner:
                raise InvalidArgumentError(f"{requested} does not match {provisioner}")
            name = requested
        else:
            defaults = [
                i.name
                for i in self.snapshot_classes.values()
                if i.driver == provisioner and i.is_default
            ]
            if len(defaults) != 1:
                raise NotFoundError(f"No default snapshot class for {provisioner}")
            name = defaults[0]
        return SnapshotClassBinding(
            storage_class=storage_class.name,
            provisioner=provisioner,
            snapshot_class=name,
        )

    def get_storage_class_name_from_claim(self, claim_name: str) -> str:
        return self.get_data_volume(claim_name).storage_class_name or ""

    def get_data_volume(self, name: str) -> RemoteVolume:
        if name not in self.volumes:
            raise NotFoundError(f"Data volume {name} not found")
        return self.volumes[name]

    def create_data_volume(self, volume: RemoteVolume) -> RemoteVolume:
        created = volume.model_copy(update={"uid": str(uuid4())})
        self.volumes[volume.name] = created
        self.created_volumes.append(created)
        return created

    def delete_data_volume(self, name: str) -> None:
        self.volumes.pop(name, None)

    def list_instances(self) -> list[ComputeInstance]:
        return list(self.instances.values())

    def attach_volume(
        self,
        instance_name: str,
        attachment: VolumeAttachment,
        namespace: str | None = None,
    ) -> bool:
        if instance_name not in self.instances:
            raise NotFoundError(f"Instance {instance_name} not found")
        attached = self.attached.setdefault(instance_name, [])
        if attachment.disk_name in [i.disk_name for i in attached]:
            return False
        attached.append(attachment)
        return True

    def detach_volume(
        self, instance_name: str, disk_name: str, namespace: str | None = None
    ) -> bool:
        self.detached.append((instance_name, disk_name))
        attached = self.attached.get(instance_name, [])
        self.attached[instance_name] = [i for i in attached if i.disk_name != disk_name]
        return len(attached) != len(self.attached[instance_name])

    def get_volume_snapshot(self, name: str) -> VolumeSnapshot:
        if name not in self.snapshots:
            raise NotFoundError(f"Volume snapshot {name} not found")
        return self.snapshots[name]

    def create_volume_snapshot(
        self, name: str, source_volume: str, snapshot_class: str | None
    ) -> VolumeSnapshot:
        snapshot = VolumeSnapshot(
            name=name,
            namespace=self.namespace,
            uid=str(uuid4()),
            source_volume=source_volume,
            snapshot_class=snapshot_class,
            restore_size_bytes=self.volumes[source_volume].size_bytes,
        )
        self.snapshots[name] = snapshot
        self.created_snapshots.append((name, source_volume, snapshot_class))
        return snapshot

    def delete_volume_snapshot(self, name: str) -> None:
        self.snapshots.pop(name, None)

    def list_volume_snapshots(self) -> list[VolumeSnapshot]:
        return list(self.snapshots.values())


class FakeDeviceLister(DeviceLister):
    def __init__(self, devices: list[BlockDevice] | None = None) -> None:
        self.devices = devices or []

    def list_block_devices(self) -> list[BlockDevice]:
        return list(self.devices)


class FakeFsMaker(FsMaker):
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def make_filesystem(self, device_path: str, fs_type: str) -> None:
        self.calls.append((device_path, fs_type))


class FakeResizer(Resizer):
    """Devices listed in `expanded` are larger than their filesystem."""

    def __init__(self) -> None:
        self.mounted: dict[str, str] = {}
        self.expanded: set[str] = set()
        self.resized: list[tuple[str, str]] = []

    def mounted_device(self, mount_path: str) -> str:
        if mount_path not in self.mounted:
            raise NotFoundError(f"Device path for {mount_path} not found")
        return self.mounted[mount_path]

    def need_resize(self, device_path: str, mount_path: str) -> bool:
        return device_path in self.expanded

    def resize(self, device_path: str, mount_path: str) -> None:
        self.expanded.discard(device_path)
        self.resized.append((device_path, mount_path))


class FakeMounter(Mounter):
    """Mount table in memory. Paths listed in `existing` exist on disk."""

    def __init__(self) -> None:
        self.mounts: dict[str, tuple[str, str, list[str]]] = {}
        self.existing: set[str] = set()
        self.block_devices: dict[str, int] = {}
        self.stats = VolumeStats()

    def mount(
        self, source: str, target: str, fs_type: str, options: list[str]
    ) -> None:
        self.mounts[target] = (source, fs_type, options)

    def unmount(self, target: str) -> None:
        self.mounts.pop(target, None)

    def path_exists(self, path: str) -> bool:
        return path in self.existing or path in self.mounts

    def is_mount_point(self, path: str) -> bool:
        return path in self.mounts

    def is_block_device(self, path: str) -> bool:
        return path in self.block_devices

    def block_device_size(self, path: str) -> int:
        return self.block_devices[path]

    def filesystem_stats(self, path: str) -> VolumeStats:
        return self.stats
