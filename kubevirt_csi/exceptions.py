"""Driver specific exceptions.

Errors raised while serving a request derive from CSIError and carry the gRPC
status code returned to the caller.
"""

import grpc


class AbortProcedureError(Exception):
    """Exception raised when the driver start up must be aborted."""

    def __init__(self, message: str, *args):
        self.message = message
        super().__init__(message, *args)


class InvalidYamlError(Exception):
    def __init__(self, message: str, *args, **kwargs):
        self.message = message
        super().__init__(message, *args)


class CSIError(Exception):
    """Base class for the errors returned to the CSI caller."""

    code: grpc.StatusCode = grpc.StatusCode.INTERNAL

    def __init__(self, message: str, *args):
        self.message = message
        super().__init__(message, *args)


class InvalidArgumentError(CSIError):
    code = grpc.StatusCode.INVALID_ARGUMENT


class NotFoundError(CSIError):
    code = grpc.StatusCode.NOT_FOUND


class AlreadyExistsError(CSIError):
    code = grpc.StatusCode.ALREADY_EXISTS


class PermissionDeniedError(CSIError):
    code = grpc.StatusCode.PERMISSION_DENIED


class FailedPreconditionError(CSIError):
    code = grpc.StatusCode.FAILED_PRECONDITION


class AbortedError(CSIError):
    code = grpc.StatusCode.ABORTED


class UnimplementedError(CSIError):
    code = grpc.StatusCode.UNIMPLEMENTED


class InternalError(CSIError):
    code = grpc.StatusCode.INTERNAL


class InvalidVolumeError(InvalidArgumentError):
    """The infra cluster volume is not managed by this driver instance."""


class InvalidSnapshotError(InvalidArgumentError):
    """The infra cluster snapshot is not managed by this driver instance."""
