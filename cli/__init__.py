"""Command line tools for the device telemetry reconciler.

``reconciler trigger|status|latest`` talk to a running service over HTTP;
``reconciler run-once`` runs a single pass in-process.
"""

from importlib import import_module
from types import ModuleType

__all__ = ["app"]


def __getattr__(name: str) -> ModuleType:
    # Resolve lazily so ``cli.app`` stays the module that tests patch.
    if name == "app":
        return import_module("cli.app")
    raise AttributeError(f"module 'cli' has no attribute {name!r}")
