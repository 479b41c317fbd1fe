"""CSI v1 protobuf messages and gRPC service stubs.

The modules are generated at import time from the ``csi.proto`` file shipped with
the package.
"""

import sys
from pathlib import Path

import grpc

# The proto file is looked up relative to the entries of sys.path.
PROTO_ROOT = str(Path(__file__).resolve().parent.parent)
if PROTO_ROOT not in sys.path:
    sys.path.append(PROTO_ROOT)

csi_pb2, csi_pb2_grpc = grpc.protos_and_services("kubevirt_csi/csi.proto")
