"""Resolution of the CSI node ID of a tenant node."""

from kubevirt_csi.exceptions import FailedPreconditionError

PROVIDER_ID_PREFIX = "kubevirt://"
CLUSTER_NAMESPACE_ANNOTATION = "cluster.x-k8s.io/cluster-namespace"
INFRA_VM_NAME_ANNOTATION = "csi.kubevirt.io/infra-vm-name"
INFRA_VM_NAMESPACE_ANNOTATION = "csi.kubevirt.io/infra-vm-namespace"


def resolve_node_id(provider_id: str, annotations: dict[str, str]) -> str:
    """Return the namespace/name of the infra VM running a tenant node.

    The cloud provider ID (kubevirt://<vm>) together with the cluster namespace
    annotation has precedence over the explicit infra VM annotations.

    Args:
        provider_id (str): tenant node spec.providerID.
        annotations (dict of {str: str}): tenant node annotations.

    Returns:
        str: the node ID in the namespace/name format.

    Raises:
        FailedPreconditionError if no rule identifies the VM.

    """
    namespace = annotations.get(CLUSTER_NAMESPACE_ANNOTATION, "")
    if provider_id.startswith(PROVIDER_ID_PREFIX) and namespace != "":
        vm_name = provider_id[len(PROVIDER_ID_PREFIX) :]
        if vm_name != "":
            return f"{namespace}/{vm_name}"

    vm_name = annotations.get(INFRA_VM_NAME_ANNOTATION, "")
    vm_namespace = annotations.get(INFRA_VM_NAMESPACE_ANNOTATION, "")
    if vm_name != "" and vm_namespace != "":
        return f"{vm_namespace}/{vm_name}"

    msg = "Unable to determine the infra VM of the node. Make sure the node has the "
    msg += f"'{INFRA_VM_NAME_ANNOTATION}' and '{INFRA_VM_NAMESPACE_ANNOTATION}' "
    msg += "annotations, then restart the kubevirt-csi-node pod"
    raise FailedPreconditionError(msg)
