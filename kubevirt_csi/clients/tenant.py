"""Client of the tenant cluster the CSI driver serves."""

from kubevirt_csi.clients.core import ClusterClient, api_errors
from kubevirt_csi.models.node import NodeInfo

INFRA_SNAPSHOT_CLASS_PARAMETER = "infraSnapshotClassName"


class TenantClusterClient(ClusterClient):
    """Access to the tenant cluster nodes and volume snapshot classes."""

    cluster = "tenant"

    def get_node(self, name: str) -> NodeInfo:
        """Retrieve the tenant node attributes identifying its infra VM."""
        with api_errors("retrieve", f"node {name}"):
            node = self.corev1.read_node(name=name)
        return NodeInfo(
            name=node.metadata.name,
            uid=node.metadata.uid or "",
            labels=node.metadata.labels or {},
            annotations=node.metadata.annotations or {},
            provider_id=(node.spec.provider_id if node.spec else None) or "",
        )

    def build_snapshot_class_mapping(self, driver: str) -> dict[str, list[str]]:
        """Map infra volume snapshot classes to the tenant ones referencing them.

        Only the tenant snapshot classes of the given driver with the
        infraSnapshotClassName parameter are considered.

        Args:
            driver (str): CSI driver name.

        Returns:
            dict of {str: list of str}: tenant snapshot class names by infra snapshot
                class name.

        """
        mapping = {}
        for snapshot_class in self.list_volume_snapshot_classes():
            if snapshot_class.driver != driver:
                continue
            infra_name = snapshot_class.parameters.get(INFRA_SNAPSHOT_CLASS_PARAMETER)
            if not infra_name:
                continue
            mapping.setdefault(infra_name, []).append(snapshot_class.name)
        for names in mapping.values():
            names.sort()
        self.logger.debug("Tenant volume snapshot class mapping: %s", mapping)
        return mapping
