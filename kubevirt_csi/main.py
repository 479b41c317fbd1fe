"""KubeVirt CSI driver entry point."""

import signal
import sys

from pydantic import ValidationError

from kubevirt_csi.config import Settings
from kubevirt_csi.driver import create_driver
from kubevirt_csi.exceptions import AbortProcedureError, CSIError, InvalidYamlError
from kubevirt_csi.logger import create_logger
from kubevirt_csi.parser import parser, settings_overrides
from kubevirt_csi.server import NonBlockingServer

STOP_GRACE_PERIOD = 10


def prechecks(settings: Settings) -> None:
    """Check the settings are consistent with the services to run.

    Raises:
        AbortProcedureError at the first inconsistency.

    """
    if not settings.RUN_NODE_SERVICE and settings.INFRA_CLUSTER_LABELS == "":
        raise AbortProcedureError(
            "infra-cluster-labels must be set when the node service is disabled"
        )
    if settings.RUN_CONTROLLER_SERVICE:
        if settings.VOLUME_PREFIX == "":
            raise AbortProcedureError("volume-prefix must be set")
        if settings.INFRA_CLUSTER_NAMESPACE == "":
            raise AbortProcedureError("infra-cluster-namespace must be set")
    if settings.RUN_NODE_SERVICE and settings.NODE_NAME == "":
        raise AbortProcedureError("node-name must be set to run the node service")
    if not settings.RUN_NODE_SERVICE and not settings.RUN_CONTROLLER_SERVICE:
        raise AbortProcedureError(
            "At least one of node and controller service must run"
        )


def main(argv: list[str] | None = None) -> None:
    """Main function.

    Build the settings from the environment, the .env file and the command line
    flags. Create the services enabled by the settings and serve them until a
    SIGTERM or SIGINT is received.
    """
    args = parser.parse_args(argv)
    settings = Settings(**settings_overrides(args))
    logger = create_logger(settings.APP_NAME, level=args.loglevel.upper())

    try:
        prechecks(settings)
        driver = create_driver(settings, logger=logger)
        server = NonBlockingServer(max_workers=settings.MAX_WORKERS, logger=logger)
        server.start(
            settings.CSI_ENDPOINT,
            driver.identity,
            controller=driver.controller,
            node=driver.node,
        )
    except (AbortProcedureError, InvalidYamlError, CSIError) as e:
        logger.error(e.message)
        exit(1)

    def shutdown(signum, frame):
        logger.info("Received signal %s", signal.Signals(signum).name)
        server.stop(STOP_GRACE_PERIOD)

    signal.signal(signal.SIGTERM, shutdown)
    signal.signal(signal.SIGINT, shutdown)
    server.wait()
    logger.info("Server stopped")


def run() -> None:
    try:
        main()
    except ValidationError as e:
        sys.stderr.write(f"Invalid settings: {e!s}\n")
        exit(1)


if __name__ == "__main__":
    run()
