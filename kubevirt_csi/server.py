"""gRPC server exposing the CSI services."""

import os
from concurrent import futures
from logging import Logger
from urllib.parse import urlparse

import grpc

from kubevirt_csi.exceptions import AbortProcedureError


def parse_endpoint(endpoint: str) -> tuple[str, str]:
    """Split a CSI endpoint into its scheme and address.

    Args:
        endpoint (str): either unix:/path, unix:///path or tcp://host:port.

    Returns:
        tuple of (str, str): the scheme and the socket path or host:port address.

    Raises:
        ValueError if the endpoint has an unsupported scheme or no address.

    """
    url = urlparse(endpoint)
    scheme = url.scheme.lower()
    if scheme == "unix":
        address = url.path
        if url.netloc != "":
            address = f"/{url.netloc}{url.path}"
        if address == "":
            raise ValueError(f"Invalid endpoint {endpoint}: missing socket path")
        return scheme, address
    if scheme == "tcp":
        if url.netloc == "":
            raise ValueError(f"Invalid endpoint {endpoint}: missing address")
        return scheme, url.netloc
    raise ValueError(f"Invalid endpoint {endpoint}: only unix and tcp are supported")


class NonBlockingServer:
    """Serve the CSI services from a pool of threads.

    `start` returns as soon as the server listens. `wait` blocks until the server
    is stopped.
    """

    def __init__(self, *, max_workers: int, logger: Logger) -> None:
        self.max_workers = max_workers
        self.logger = logger
        self.server: grpc.Server | None = None

    def start(self, endpoint: str, identity, controller=None, node=None) -> None:
        """Register the given servicers and start listening on the endpoint.

        Raises:
            AbortProcedureError if the endpoint is invalid or can't be bound.

        """
        try:
            scheme, address = parse_endpoint(endpoint)
        except ValueError as e:
            raise AbortProcedureError(str(e)) from e

        if scheme == "unix":
            parent = os.path.dirname(address)
            if parent != "" and not os.path.isdir(parent):
                raise AbortProcedureError(f"Socket directory {parent} does not exist")
            if os.path.lexists(address):
                self.logger.info("Removing stale socket %s", address)
                try:
                    os.remove(address)
                except OSError as e:
                    msg = f"Failed to remove stale socket {address}: {e!s}"
                    raise AbortProcedureError(msg) from e
            target = f"unix:{address}"
        else:
            target = address

        self.server = grpc.server(
            futures.ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="csi"
            )
        )
        for servicer in (identity, controller, node):
            if servicer is not None:
                servicer.register(self.server)

        try:
            port = self.server.add_insecure_port(target)
        except RuntimeError as e:
            raise AbortProcedureError(f"Could not bind to {endpoint}: {e!s}") from e
        if scheme == "tcp" and port == 0:
            raise AbortProcedureError(f"Could not bind to {endpoint}")

        self.server.start()
        self.logger.info("Listening for connections on %s", endpoint)

    def wait(self) -> None:
        if self.server is not None:
            self.server.wait_for_termination()

    def stop(self, grace: float | None = None) -> None:
        """Stop accepting RPCs, let the running ones complete within grace."""
        if self.server is not None:
            self.logger.info("Stopping server")
            self.server.stop(grace).wait()
