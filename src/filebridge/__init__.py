"""filebridge: JSON-RPC tool gateway for file and image operations."""

from __future__ import annotations

from typing import TYPE_CHECKING

__version__ = "0.1.0"

if TYPE_CHECKING:
    from filebridge.server.compose import Gateway as Gateway
    from filebridge.server.compose import build_gateway as build_gateway

_LAZY_EXPORTS = {
    "Gateway": "filebridge.server.compose",
    "build_gateway": "filebridge.server.compose",
}


def __getattr__(name: str) -> object:
    module_path = _LAZY_EXPORTS.get(name)
    if module_path is not None:
        import importlib

        mod = importlib.import_module(module_path)
        return getattr(mod, name)
    raise AttributeError(f"module 'filebridge' has no attribute {name!r}")
