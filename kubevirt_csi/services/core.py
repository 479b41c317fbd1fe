"""Helpers shared by the CSI services."""

from functools import wraps

import grpc
from google.protobuf import text_format

from kubevirt_csi.csi import csi_pb2
from kubevirt_csi.exceptions import CSIError, InvalidArgumentError

MULTI_NODE_MODES = (
    csi_pb2.VolumeCapability.AccessMode.MULTI_NODE_READER_ONLY,
    csi_pb2.VolumeCapability.AccessMode.MULTI_NODE_SINGLE_WRITER,
    csi_pb2.VolumeCapability.AccessMode.MULTI_NODE_MULTI_WRITER,
)

# Polled continuously by the sidecars.
SILENCED = ("Probe", "NodeGetCapabilities", "NodeGetVolumeStats")


def format_message(message) -> str:
    """Render a protobuf message on one line, without its secrets."""
    if "secrets" in message.DESCRIPTOR.fields_by_name:
        safe = type(message)()
        safe.CopyFrom(message)
        safe.ClearField("secrets")
        message = safe
    return text_format.MessageToString(message, as_one_line=True)


def logged_rpc(func):
    """Log an RPC and translate the raised errors into gRPC status codes.

    The decorated servicer method must have a ``logger`` attribute on its instance.
    CSIError instances abort the call with their own code, any other exception
    with INTERNAL.
    """
    method = func.__name__

    @wraps(func)
    def wrapper(self, request, context):
        log = self.logger.debug
        if method not in SILENCED:
            log = self.logger.info
        log("%s >>> %s", method, format_message(request))
        try:
            response = func(self, request, context)
        except CSIError as e:
            self.logger.error("%s <<< %s: %s", method, e.code.name, e.message)
            context.abort(e.code, e.message)
            return None
        except Exception as e:
            self.logger.exception("Unexpected error during %s", method)
            context.abort(grpc.StatusCode.INTERNAL, f"{method}: {e!s}")
            return None
        log("%s <<< %s", method, format_message(response))
        return response

    return wrapper


def require(value, field: str) -> None:
    """Reject a request missing a mandatory field."""
    if not value:
        raise InvalidArgumentError(f"{field} missing in request")


def validate_capability(capability: csi_pb2.VolumeCapability) -> None:
    """Check a capability is either a block or a mount one, single node only.

    Raises:
        InvalidArgumentError otherwise.

    """
    access_type = capability.WhichOneof("access_type")
    if access_type is None:
        raise InvalidArgumentError(
            "Volume capability must be either a block or a mount one"
        )
    mode = capability.access_mode.mode
    if mode in MULTI_NODE_MODES:
        name = csi_pb2.VolumeCapability.AccessMode.Mode.Name(mode)
        raise InvalidArgumentError(f"Access mode {name} is not supported")
