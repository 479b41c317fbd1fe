"""Driver settings."""

from typing import Annotated

from pydantic import AfterValidator, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_labels(v: str) -> dict[str, str]:
    """Convert a comma separated list of key=value pairs into a dict.

    Args:
        v (str): input string. An empty string means no labels.

    Returns:
        dict[str, str]: the labels.

    Raises:
        ValueError if a pair does not have the key=value format.

    """
    labels = {}
    if v == "":
        return labels
    for pair in v.split(","):
        key, sep, value = pair.partition("=")
        if sep == "" or key.strip() == "":
            raise ValueError(f"Invalid label format '{pair}', expected key=value")
        labels[key.strip()] = value.strip()
    return labels


def valid_labels(v: str) -> str:
    """Check the labels string is well formed.

    Args:
        v (str): input string.

    Returns:
        str: the input string

    """
    parse_labels(v)
    return v


class Settings(BaseSettings):
    """Settings for the driver."""

    APP_NAME: Annotated[
        str, Field(default="kubevirt-csi-driver", description="Application name.")
    ]
    DRIVER_NAME: Annotated[
        str, Field(default="csi.kubevirt.io", description="CSI plugin name.")
    ]
    CSI_ENDPOINT: Annotated[
        str,
        Field(
            default="unix:/csi/csi.sock",
            description="CSI endpoint. Either unix:/path or tcp://host:port.",
        ),
    ]
    NODE_NAME: Annotated[
        str,
        Field(
            default="",
            description="Name of the tenant node the node service is running on.",
        ),
    ]
    INFRA_CLUSTER_NAMESPACE: Annotated[
        str,
        Field(
            default="",
            description="Infra cluster namespace hosting the tenant virtual machines.",
        ),
    ]
    INFRA_CLUSTER_KUBECONFIG: Annotated[
        str,
        Field(
            default="",
            description="Path to the infra cluster kubeconfig. Empty means in-cluster "
            "configuration.",
        ),
    ]
    INFRA_CLUSTER_LABELS: Annotated[
        str,
        Field(
            default="",
            description="Comma separated key=value labels applied to infra cluster "
            "objects created by the driver.",
        ),
        AfterValidator(valid_labels),
    ]
    VOLUME_PREFIX: Annotated[
        str,
        Field(
            default="pvc",
            description="Prefix every volume name created by the driver must have.",
        ),
    ]
    TENANT_CLUSTER_KUBECONFIG: Annotated[
        str,
        Field(
            default="",
            description="Path to the tenant cluster kubeconfig. Empty means "
            "in-cluster configuration.",
        ),
    ]
    RUN_NODE_SERVICE: Annotated[
        bool, Field(default=True, description="Serve the CSI node service.")
    ]
    RUN_CONTROLLER_SERVICE: Annotated[
        bool, Field(default=True, description="Serve the CSI controller service.")
    ]
    INFRA_STORAGE_CLASS_ENFORCEMENT: Annotated[
        str,
        Field(
            default="",
            description="YAML document restricting the infra storage classes and "
            "volume snapshot classes tenants may use.",
        ),
    ]
    MAX_WORKERS: Annotated[
        int,
        Field(default=10, gt=0, description="Number of threads serving the RPCs."),
    ]

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    @property
    def infra_labels(self) -> dict[str, str]:
        return parse_labels(self.INFRA_CLUSTER_LABELS)
