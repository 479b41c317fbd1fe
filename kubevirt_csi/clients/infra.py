"""Client of the infra cluster hosting the tenant virtual machines and volumes."""

from logging import Logger
from typing import Any

from kubernetes.client.exceptions import ApiException
from kubernetes.utils import parse_quantity

from kubernetes import client
from kubevirt_csi.clients.core import (
    SNAPSHOT_GROUP,
    SNAPSHOT_VERSION,
    ClusterClient,
    api_errors,
    metadata_fields,
    to_volume_snapshot_class,
)
from kubevirt_csi.exceptions import (
    AlreadyExistsError,
    FailedPreconditionError,
    InvalidArgumentError,
    InvalidSnapshotError,
    InvalidVolumeError,
    NotFoundError,
)
from kubevirt_csi.models.node import ComputeInstance, VolumeStatus
from kubevirt_csi.models.storageclass import (
    SnapshotClassBinding,
    StorageClass,
    VolumeSnapshotClass,
)
from kubevirt_csi.models.volume import (
    RemoteVolume,
    VolumeAttachment,
    VolumeSnapshot,
    VolumeSource,
)

CDI_GROUP = "cdi.kubevirt.io"
CDI_VERSION = "v1beta1"
KUBEVIRT_GROUP = "kubevirt.io"
KUBEVIRT_VERSION = "v1"
VMI_SUBRESOURCE_PATH = (
    "/apis/subresources.kubevirt.io/v1/namespaces/{namespace}"
    "/virtualmachineinstances/{name}/{action}"
)
DEFAULT_STORAGE_CLASS_ANNOTATION = "storageclass.kubernetes.io/is-default-class"
DELETE_AFTER_COMPLETION_ANNOTATION = "cdi.kubevirt.io/storage.deleteAfterCompletion"


def to_remote_volume(obj: dict[str, Any]) -> RemoteVolume:
    """Build a RemoteVolume from a DataVolume object."""
    spec = obj.get("spec", {})
    storage = spec.get("storage") or spec.get("pvc") or {}
    requests = storage.get("resources", {}).get("requests", {})
    source = VolumeSource()
    for kind in ("snapshot", "pvc"):
        if kind in spec.get("source", {}):
            source = VolumeSource(kind=kind, name=spec["source"][kind].get("name", ""))
    return RemoteVolume(
        **metadata_fields(obj),
        storage_class_name=storage.get("storageClassName"),
        size_bytes=int(parse_quantity(requests.get("storage", "0"))),
        source=source,
    )


def to_volume_snapshot(obj: dict[str, Any]) -> VolumeSnapshot:
    """Build a VolumeSnapshot from the API object."""
    spec = obj.get("spec", {})
    status = obj.get("status") or {}
    restore_size = status.get("restoreSize")
    return VolumeSnapshot(
        **metadata_fields(obj),
        source_volume=spec.get("source", {}).get("persistentVolumeClaimName", ""),
        snapshot_class=spec.get("volumeSnapshotClassName"),
        creation_time=status.get("creationTime"),
        ready_to_use=status.get("readyToUse", False),
        restore_size_bytes=int(parse_quantity(restore_size)) if restore_size else 0,
    )


def to_compute_instance(obj: dict[str, Any]) -> ComputeInstance:
    """Build a ComputeInstance from a VirtualMachineInstance object."""
    spec = obj.get("spec", {})
    status = obj.get("status") or {}
    volume_statuses = [
        VolumeStatus(
            name=item["name"], hotplug=item.get("hotplugVolume") is not None
        )
        for item in status.get("volumeStatus") or []
    ]
    return ComputeInstance(
        **metadata_fields(obj),
        firmware_uuid=spec.get("domain", {}).get("firmware", {}).get("uuid"),
        volumes=[item["name"] for item in spec.get("volumes") or []],
        volume_statuses=volume_statuses,
    )


class InfraClusterClient(ClusterClient):
    """Access to the infra cluster objects backing the tenant volumes.

    Every namespaced object lives in the configured infra namespace. Objects created
    by the driver carry the infra labels; objects without them, or volumes without
    the volume prefix, are rejected.
    """

    cluster = "infra"

    def __init__(
        self,
        *,
        api_client: client.ApiClient,
        namespace: str,
        labels: dict[str, str],
        volume_prefix: str,
        logger: Logger,
    ) -> None:
        super().__init__(api_client=api_client, logger=logger)
        self.namespace = namespace
        self.labels = labels
        self.volume_prefix = volume_prefix

    # Storage classes and snapshot classes

    def get_storage_class(self, name: str) -> StorageClass:
        """Retrieve a storage class. An empty name means the cluster default."""
        if name == "":
            return self.get_default_storage_class()
        with api_errors("retrieve", f"storage class {name}"):
            item = self.storagev1.read_storage_class(name)
        return self._to_storage_class(item)

    def get_default_storage_class(self) -> StorageClass:
        with api_errors("list", "storage classes"):
            items = self.storagev1.list_storage_class().items
        storage_classes = [self._to_storage_class(i) for i in items]
        defaults = [i for i in storage_classes if i.is_default]
        if len(defaults) == 0:
            raise NotFoundError("No default storage class in the infra cluster")
        if len(defaults) > 1:
            names = sorted(i.name for i in defaults)
            raise FailedPreconditionError(
                f"Multiple default storage classes in the infra cluster: {names}"
            )
        return defaults[0]

    def _to_storage_class(self, item: client.V1StorageClass) -> StorageClass:
        annotations = item.metadata.annotations or {}
        return StorageClass(
            name=item.metadata.name,
            uid=item.metadata.uid or "",
            labels=item.metadata.labels or {},
            annotations=annotations,
            is_default=annotations.get(DEFAULT_STORAGE_CLASS_ANNOTATION) == "true",
            provisioner=item.provisioner,
        )

    def get_volume_snapshot_class(self, name: str) -> VolumeSnapshotClass:
        with api_errors("retrieve", f"volume snapshot class {name}"):
            obj = self.custom.get_cluster_custom_object(
                group=SNAPSHOT_GROUP,
                version=SNAPSHOT_VERSION,
                plural="volumesnapshotclasses",
                name=name,
            )
        return to_volume_snapshot_class(obj)

    def resolve_snapshot_class(
        self, storage_class_name: str, requested: str = ""
    ) -> SnapshotClassBinding:
        """Find the volume snapshot class to use for volumes of a storage class.

        The snapshot class must be handled by the storage class's provisioner. When
        no snapshot class is requested, use the default one of that provisioner.

        Args:
            storage_class_name (str): infra storage class. Empty means the default.
            requested (str): explicitly requested snapshot class. May be empty.

        Returns:
            SnapshotClassBinding: storage class, provisioner and snapshot class.

        Raises:
            NotFoundError if the storage class, the requested snapshot class or a
                default snapshot class does not exist.
            InvalidArgumentError if the requested snapshot class belongs to another
                provisioner.
            FailedPreconditionError if the provisioner has multiple defaults.

        """
        storage_class = self.get_storage_class(storage_class_name)
        provisioner = storage_class.provisioner

        if requested != "":
            snapshot_class = self.get_volume_snapshot_class(requested)
            if snapshot_class.driver != provisioner:
                msg = f"Volume snapshot class {requested} driver "
                msg += f"{snapshot_class.driver} does not match storage class "
                msg += f"{storage_class.name} provisioner {provisioner}"
                raise InvalidArgumentError(msg)
            return SnapshotClassBinding(
                storage_class=storage_class.name,
                provisioner=provisioner,
                snapshot_class=snapshot_class.name,
            )

        defaults = [
            i
            for i in self.list_volume_snapshot_classes()
            if i.driver == provisioner and i.is_default
        ]
        if len(defaults) == 0:
            raise NotFoundError(
                f"No default volume snapshot class for provisioner {provisioner}"
            )
        if len(defaults) > 1:
            names = sorted(i.name for i in defaults)
            msg = "Multiple default volume snapshot classes for provisioner "
            msg += f"{provisioner}: {names}"
            raise FailedPreconditionError(msg)
        self.logger.debug(
            "Using default volume snapshot class %s for storage class %s",
            defaults[0].name,
            storage_class.name,
        )
        return SnapshotClassBinding(
            storage_class=storage_class.name,
            provisioner=provisioner,
            snapshot_class=defaults[0].name,
        )

    # Claims

    def _get_claim(self, claim_name: str) -> client.V1PersistentVolumeClaim:
        with api_errors("retrieve", f"claim {self.namespace}/{claim_name}"):
            return self.corev1.read_namespaced_persistent_volume_claim(
                name=claim_name, namespace=self.namespace
            )

    def _bound_volume_name(
        self, claim_name: str, claim: client.V1PersistentVolumeClaim
    ) -> str:
        """Return the persistent volume bound to the claim.

        Raises:
            FailedPreconditionError if the claim is not bound yet.

        """
        volume_name = claim.spec.volume_name
        if not volume_name or (claim.status and claim.status.phase != "Bound"):
            raise FailedPreconditionError(f"Claim {claim_name} is not bound yet")
        return volume_name

    def get_storage_class_name_from_claim(self, claim_name: str) -> str:
        """Walk claim, bound persistent volume and storage class.

        Returns:
            str: storage class name. Empty if neither object names one.

        Raises:
            NotFoundError if the claim or the persistent volume does not exist.
            FailedPreconditionError if the claim is not bound yet.

        """
        claim = self._get_claim(claim_name)
        volume_name = self._bound_volume_name(claim_name, claim)
        with api_errors("retrieve", f"persistent volume {volume_name}"):
            volume = self.corev1.read_persistent_volume(name=volume_name)
        return volume.spec.storage_class_name or claim.spec.storage_class_name or ""

    # DataVolumes

    def _check_volume(self, volume: RemoteVolume) -> None:
        if not volume.has_labels(self.labels):
            raise InvalidVolumeError(
                f"Data volume {volume.name} does not have labels {self.labels}"
            )
        self._check_volume_name(volume.name)

    def _check_volume_name(self, name: str) -> None:
        if not name.startswith(self.volume_prefix):
            raise InvalidVolumeError(
                f"Data volume {name} does not have the prefix {self.volume_prefix}"
            )

    def get_data_volume(self, name: str) -> RemoteVolume:
        """Retrieve a DataVolume created by the driver.

        Raises:
            NotFoundError if it does not exist.
            InvalidVolumeError if it is not managed by the driver.

        """
        with api_errors("retrieve", f"data volume {name}"):
            obj = self.custom.get_namespaced_custom_object(
                group=CDI_GROUP,
                version=CDI_VERSION,
                namespace=self.namespace,
                plural="datavolumes",
                name=name,
            )
        volume = to_remote_volume(obj)
        self._check_volume(volume)
        return volume

    def create_data_volume(self, volume: RemoteVolume) -> RemoteVolume:
        """Create a DataVolume and return it with the UID assigned by the cluster."""
        self._check_volume_name(volume.name)
        storage = {
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": str(volume.size_bytes)}},
        }
        if volume.storage_class_name:
            storage["storageClassName"] = volume.storage_class_name
        body = {
            "apiVersion": f"{CDI_GROUP}/{CDI_VERSION}",
            "kind": "DataVolume",
            "metadata": {
                "name": volume.name,
                "namespace": self.namespace,
                "labels": {**volume.labels, **self.labels},
                "annotations": {
                    **volume.annotations,
                    DELETE_AFTER_COMPLETION_ANNOTATION: "false",
                },
            },
            "spec": {
                "storage": storage,
                "source": volume.source.to_spec(self.namespace),
            },
        }
        self.logger.info("Creating data volume %s/%s", self.namespace, volume.name)
        with api_errors("create", f"data volume {volume.name}"):
            obj = self.custom.create_namespaced_custom_object(
                group=CDI_GROUP,
                version=CDI_VERSION,
                namespace=self.namespace,
                plural="datavolumes",
                body=body,
            )
        return to_remote_volume(obj)

    def delete_data_volume(self, name: str) -> None:
        """Delete a DataVolume. A missing DataVolume is not an error."""
        try:
            self.get_data_volume(name)
        except NotFoundError:
            self.logger.info("Data volume %s already deleted", name)
            return
        self.logger.info("Deleting data volume %s/%s", self.namespace, name)
        try:
            with api_errors("delete", f"data volume {name}"):
                self.custom.delete_namespaced_custom_object(
                    group=CDI_GROUP,
                    version=CDI_VERSION,
                    namespace=self.namespace,
                    plural="datavolumes",
                    name=name,
                )
        except NotFoundError:
            self.logger.info("Data volume %s already deleted", name)

    # VirtualMachineInstances

    def list_instances(self) -> list[ComputeInstance]:
        with api_errors("list", "virtual machine instances"):
            data = self.custom.list_namespaced_custom_object(
                group=KUBEVIRT_GROUP,
                version=KUBEVIRT_VERSION,
                namespace=self.namespace,
                plural="virtualmachineinstances",
            )
        return [to_compute_instance(i) for i in data.get("items", [])]

    def get_instance(self, name: str, namespace: str | None = None) -> ComputeInstance:
        namespace = namespace or self.namespace
        with api_errors("retrieve", f"virtual machine instance {namespace}/{name}"):
            obj = self.custom.get_namespaced_custom_object(
                group=KUBEVIRT_GROUP,
                version=KUBEVIRT_VERSION,
                namespace=namespace,
                plural="virtualmachineinstances",
                name=name,
            )
        return to_compute_instance(obj)

    def _call_vmi_subresource(
        self, name: str, namespace: str, action: str, body: dict[str, Any]
    ) -> None:
        """PUT a body to a VMI subresource with either generation of ApiClient."""
        path = VMI_SUBRESOURCE_PATH.format(
            namespace=namespace, name=name, action=action
        )
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if not hasattr(self.api_client, "param_serialize"):
            self.api_client.call_api(
                path,
                "PUT",
                header_params=headers,
                body=body,
                auth_settings=["BearerToken"],
                response_type=None,
                _return_http_data_only=True,
            )
            return

        params = self.api_client.param_serialize(
            method="PUT",
            resource_path=path,
            header_params=headers,
            body=body,
            auth_settings=["BearerToken"],
        )
        response = self.api_client.call_api(*params)
        response.read()
        if not 200 <= response.status <= 299:
            raise ApiException(http_resp=response)

    def attach_volume(
        self,
        instance_name: str,
        attachment: VolumeAttachment,
        namespace: str | None = None,
    ) -> bool:
        """Hotplug a DataVolume into a running virtual machine instance.

        Returns:
            bool: False if the disk was already attached, True otherwise.

        """
        namespace = namespace or self.namespace
        instance = self.get_instance(instance_name, namespace)
        disk = attachment.disk_name
        if disk in instance.volumes or instance.get_volume_status(disk) is not None:
            self.logger.info("Disk %s already attached to %s", disk, instance_name)
            return False

        self.logger.info(
            "Attaching disk %s (serial %s, bus %s) to %s/%s",
            disk,
            attachment.serial,
            attachment.bus.value,
            namespace,
            instance_name,
        )
        try:
            with api_errors("attach", f"disk {disk} to {namespace}/{instance_name}"):
                self._call_vmi_subresource(
                    instance_name,
                    namespace,
                    "addvolume",
                    attachment.to_add_volume_options(),
                )
        except AlreadyExistsError:
            self.logger.info("Disk %s already attached to %s", disk, instance_name)
            return False
        return True

    def detach_volume(
        self, instance_name: str, disk_name: str, namespace: str | None = None
    ) -> bool:
        """Hot-unplug a disk from a virtual machine instance.

        A missing instance or a disk not attached are not errors.

        Returns:
            bool: True if a detach request was issued, False otherwise.

        """
        namespace = namespace or self.namespace
        try:
            instance = self.get_instance(instance_name, namespace)
        except NotFoundError:
            self.logger.info("Instance %s/%s not found", namespace, instance_name)
            return False

        status = instance.get_volume_status(disk_name)
        if status is None and disk_name not in instance.volumes:
            self.logger.info("Disk %s not attached to %s", disk_name, instance_name)
            return False
        if status is not None and not status.hotplug:
            self.logger.warning(
                "Disk %s of %s is not hotplugged. Not detaching it",
                disk_name,
                instance_name,
            )
            return False

        self.logger.info(
            "Detaching disk %s from %s/%s", disk_name, namespace, instance_name
        )
        try:
            with api_errors(
                "detach", f"disk {disk_name} from {namespace}/{instance_name}"
            ):
                self._call_vmi_subresource(
                    instance_name, namespace, "removevolume", {"name": disk_name}
                )
        except NotFoundError:
            self.logger.info("Disk %s already detached", disk_name)
            return False
        return True

    # VolumeSnapshots

    def _check_snapshot(self, snapshot: VolumeSnapshot) -> None:
        if not snapshot.has_labels(self.labels):
            raise InvalidSnapshotError(
                f"Volume snapshot {snapshot.name} does not have labels {self.labels}"
            )

    def get_volume_snapshot(self, name: str) -> VolumeSnapshot:
        """Retrieve a VolumeSnapshot created by the driver.

        Raises:
            NotFoundError if it does not exist.
            InvalidSnapshotError if it is not managed by the driver.

        """
        with api_errors("retrieve", f"volume snapshot {name}"):
            obj = self.custom.get_namespaced_custom_object(
                group=SNAPSHOT_GROUP,
                version=SNAPSHOT_VERSION,
                namespace=self.namespace,
                plural="volumesnapshots",
                name=name,
            )
        snapshot = to_volume_snapshot(obj)
        self._check_snapshot(snapshot)
        return snapshot

    def create_volume_snapshot(
        self, name: str, source_volume: str, snapshot_class: str | None
    ) -> VolumeSnapshot:
        spec = {"source": {"persistentVolumeClaimName": source_volume}}
        if snapshot_class:
            spec["volumeSnapshotClassName"] = snapshot_class
        body = {
            "apiVersion": f"{SNAPSHOT_GROUP}/{SNAPSHOT_VERSION}",
            "kind": "VolumeSnapshot",
            "metadata": {
                "name": name,
                "namespace": self.namespace,
                "labels": dict(self.labels),
            },
            "spec": spec,
        }
        self.logger.info(
            "Creating volume snapshot %s of %s with class %s",
            name,
            source_volume,
            snapshot_class or "<default>",
        )
        with api_errors("create", f"volume snapshot {name}"):
            obj = self.custom.create_namespaced_custom_object(
                group=SNAPSHOT_GROUP,
                version=SNAPSHOT_VERSION,
                namespace=self.namespace,
                plural="volumesnapshots",
                body=body,
            )
        return to_volume_snapshot(obj)

    def delete_volume_snapshot(self, name: str) -> None:
        """Delete a VolumeSnapshot. A missing VolumeSnapshot is not an error."""
        try:
            self.get_volume_snapshot(name)
        except NotFoundError:
            self.logger.info("Volume snapshot %s already deleted", name)
            return
        self.logger.info("Deleting volume snapshot %s/%s", self.namespace, name)
        try:
            with api_errors("delete", f"volume snapshot {name}"):
                self.custom.delete_namespaced_custom_object(
                    group=SNAPSHOT_GROUP,
                    version=SNAPSHOT_VERSION,
                    namespace=self.namespace,
                    plural="volumesnapshots",
                    name=name,
                )
        except NotFoundError:
            self.logger.info("Volume snapshot %s already deleted", name)

    def list_volume_snapshots(self) -> list[VolumeSnapshot]:
        """List the VolumeSnapshots created by the driver."""
        selector = ",".join(f"{k}={v}" for k, v in sorted(self.labels.items()))
        with api_errors("list", "volume snapshots"):
            data = self.custom.list_namespaced_custom_object(
                group=SNAPSHOT_GROUP,
                version=SNAPSHOT_VERSION,
                namespace=self.namespace,
                plural="volumesnapshots",
                label_selector=selector,
            )
        snapshots = [to_volume_snapshot(i) for i in data.get("items", [])]
        return [i for i in snapshots if i.has_labels(self.labels)]
