"""
Built-in Primitives

Deterministic capabilities registered with every runtime.
"""

from .files import ReadFile, ListFiles, WriteFile
from .http_get import HttpGet

BUILTIN_PRIMITIVES = [ReadFile, ListFiles, WriteFile, HttpGet]

__all__ = [
    "ReadFile",
    "ListFiles",
    "WriteFile",
    "HttpGet",
    "BUILTIN_PRIMITIVES",
]
