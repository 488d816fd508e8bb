"""Adapters — collaborator bindings (command runner, fetcher).

Public re-exports for convenient access.
"""

from sourcepkg.adapters.base import Adapter, ExecutionContext
from sourcepkg.adapters.fetch.remote_file import RemoteFileAdapter
from sourcepkg.adapters.mock import MockAdapter
from sourcepkg.adapters.registry import AdapterRegistry
from sourcepkg.adapters.shell.command import ShellCommandAdapter

__all__ = [
    "Adapter",
    "AdapterRegistry",
    "ExecutionContext",
    "MockAdapter",
    "RemoteFileAdapter",
    "ShellCommandAdapter",
]
