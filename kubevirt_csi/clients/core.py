"""Kubernetes client base class and API error translation."""

import json
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from logging import Logger
from typing import Any

import urllib3
from kubernetes.client.exceptions import ApiException
from kubernetes.config import ConfigException

from kubernetes import client, config
from kubevirt_csi.exceptions import (
    AbortProcedureError,
    AlreadyExistsError,
    InternalError,
    NotFoundError,
    PermissionDeniedError,
)
from kubevirt_csi.models.storageclass import VolumeSnapshotClass

SNAPSHOT_GROUP = "snapshot.storage.k8s.io"
SNAPSHOT_VERSION = "v1"
DEFAULT_SNAPSHOT_CLASS_ANNOTATION = "snapshot.storage.kubernetes.io/is-default-class"


def create_api_client(kubeconfig: str, *, logger: Logger) -> client.ApiClient:
    """Create a client for a cluster's API.

    Args:
        kubeconfig (str): path to a kubeconfig file. When empty, use the in-cluster
            service account configuration.
        logger (Logger): Logger instance.

    Returns:
        client.ApiClient: the API client. Connection is only defined, not yet
            opened.

    Raises:
        AbortProcedureError if the configuration cannot be loaded.

    """
    conf = client.Configuration()
    try:
        if kubeconfig == "":
            logger.info("Creating connection using in-cluster configuration")
            config.load_incluster_config(client_configuration=conf)
        else:
            logger.info("Creating connection using kubeconfig %s", kubeconfig)
            config.load_kube_config(config_file=kubeconfig, client_configuration=conf)
    except ConfigException as e:
        source = kubeconfig or "in-cluster configuration"
        raise AbortProcedureError(f"Failed to load {source}: {e!s}") from e
    return client.ApiClient(conf)


def api_error_message(e: ApiException) -> str:
    """Extract the human readable message from an API error."""
    try:
        data = json.loads(e.body)
        return data["message"]
    except (TypeError, ValueError, KeyError):
        return e.reason or str(e)


@contextmanager
def api_errors(operation: str, resource: str) -> Iterator[None]:
    """Translate Kubernetes API errors into CSI errors.

    Args:
        operation (str): operation being performed, used in the message.
        resource (str): kind and name of the target resource.

    Raises:
        NotFoundError, AlreadyExistsError, PermissionDeniedError or InternalError.

    """
    try:
        yield
    except ApiException as e:
        msg = f"Failed to {operation} {resource}: {api_error_message(e)}"
        if e.status == 404:
            raise NotFoundError(msg) from e
        if e.status == 409:
            raise AlreadyExistsError(msg) from e
        if e.status == 403:
            raise PermissionDeniedError(msg) from e
        raise InternalError(msg) from e
    except urllib3.exceptions.MaxRetryError as e:
        raise InternalError(f"Failed to {operation} {resource}: {e.reason}") from e


def metadata_fields(obj: dict[str, Any]) -> dict[str, Any]:
    """Return the KubeObject attributes of a custom object."""
    metadata = obj.get("metadata", {})
    return {
        "name": metadata["name"],
        "namespace": metadata.get("namespace"),
        "uid": metadata.get("uid", ""),
        "labels": metadata.get("labels") or {},
        "annotations": metadata.get("annotations") or {},
    }


def to_volume_snapshot_class(obj: dict[str, Any]) -> VolumeSnapshotClass:
    """Build a VolumeSnapshotClass from the API object."""
    fields = metadata_fields(obj)
    return VolumeSnapshotClass(
        **fields,
        driver=obj.get("driver", ""),
        is_default=fields["annotations"].get(DEFAULT_SNAPSHOT_CLASS_ANNOTATION)
        == "true",
        parameters=obj.get("parameters") or {},
    )


class ClusterClient(ABC):
    """Access to one of the clusters the driver talks to.

    Instances hold no request scoped state and are shared by the threads serving
    the RPCs.
    """

    def __init__(self, *, api_client: client.ApiClient, logger: Logger) -> None:
        self.api_client = api_client
        self.logger = logger
        self.corev1 = client.CoreV1Api(self.api_client)
        self.storagev1 = client.StorageV1Api(self.api_client)
        self.custom = client.CustomObjectsApi(self.api_client)

    @property
    @abstractmethod
    def cluster(self) -> str:
        """Cluster name used in log messages."""

    def ping(self) -> None:
        """Check the cluster API is reachable.

        Raises:
            CSIError if the server version cannot be retrieved.

        """
        with api_errors("retrieve", f"{self.cluster} cluster version"):
            version = client.VersionApi(self.api_client).get_code()
        self.logger.debug("%s cluster version: %s", self.cluster, version.git_version)

    def list_volume_snapshot_classes(self) -> list[VolumeSnapshotClass]:
        """Retrieve the VolumeSnapshotClasses of the cluster."""
        with api_errors("list", f"{self.cluster} volume snapshot classes"):
            data = self.custom.list_cluster_custom_object(
                group=SNAPSHOT_GROUP,
                version=SNAPSHOT_VERSION,
                plural="volumesnapshotclasses",
            )
        return [to_volume_snapshot_class(item) for item in data.get("items", [])]
