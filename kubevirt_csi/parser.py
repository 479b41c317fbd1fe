"""Command line arguments parser."""

import argparse
import logging

log_values = [i.lower() for i in logging._nameToLevel.keys()]


def str_to_bool(v: str) -> bool:
    """Accept the usual spellings of a boolean flag value."""
    if v.lower() in ("true", "t", "yes", "y", "1"):
        return True
    if v.lower() in ("false", "f", "no", "n", "0"):
        return False
    raise argparse.ArgumentTypeError(f"Boolean value expected, got '{v}'")


parser = argparse.ArgumentParser(
    description="KubeVirt CSI driver serving tenant volumes from an infra cluster."
)
parser.add_argument(
    "-l",
    "--loglevel",
    default="warning",
    choices=log_values,
    help=f"Provide logging level. Valid values: {log_values}. \
        Example --loglevel debug, default=warning",
)
parser.add_argument(
    "--endpoint", dest="CSI_ENDPOINT", help="CSI endpoint (unix:/path, tcp://host:port)"
)
parser.add_argument("--node-name", dest="NODE_NAME", help="Tenant node name")
parser.add_argument(
    "--infra-cluster-namespace",
    dest="INFRA_CLUSTER_NAMESPACE",
    help="Infra cluster namespace hosting the virtual machines",
)
parser.add_argument(
    "--infra-cluster-kubeconfig",
    dest="INFRA_CLUSTER_KUBECONFIG",
    help="Infra cluster kubeconfig file. If not set, in-cluster config is used",
)
parser.add_argument(
    "--infra-cluster-labels",
    dest="INFRA_CLUSTER_LABELS",
    help="Infra cluster labels, comma separated key=value pairs",
)
parser.add_argument(
    "--volume-prefix", dest="VOLUME_PREFIX", help="Prefix of the created volumes"
)
parser.add_argument(
    "--tenant-cluster-kubeconfig",
    dest="TENANT_CLUSTER_KUBECONFIG",
    help="Tenant cluster kubeconfig file. If not set, in-cluster config is used",
)
parser.add_argument(
    "--run-node-service",
    dest="RUN_NODE_SERVICE",
    type=str_to_bool,
    help="Serve the CSI node service",
)
parser.add_argument(
    "--run-controller-service",
    dest="RUN_CONTROLLER_SERVICE",
    type=str_to_bool,
    help="Serve the CSI controller service",
)


def settings_overrides(args: argparse.Namespace) -> dict[str, str | bool]:
    """Return the settings explicitly given on the command line."""
    return {
        k: v for k, v in vars(args).items() if k.isupper() and v is not None
    }
