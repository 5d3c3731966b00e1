"""
Recovery Boundary Package.

Components:
- provenance: PanicInfo and the frame/stack introspection producing it
- middleware: RecoveryMiddleware for FastAPI/Starlette applications

The gRPC counterpart lives in reqobs.rpc.interceptors.
"""

from .middleware import RecoveryMiddleware
from .provenance import PanicInfo, panic_provenance, parse_stack


__all__ = [
    "PanicInfo",
    "RecoveryMiddleware",
    "panic_provenance",
    "parse_stack",
]
