"""Nullability and host type inference."""
from .engine import InferenceEngine
from .host_types import DIRECT_HOST_TYPES, HostTypeResolver, required_imports

__all__ = [
    "DIRECT_HOST_TYPES",
    "HostTypeResolver",
    "InferenceEngine",
    "required_imports",
]
