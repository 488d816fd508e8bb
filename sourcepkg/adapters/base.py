"""
Collaborator adapters.

The stage controller has two collaborators, a command runner and a
fetcher. Both sit behind ``Adapter`` and are reached only through the
registry, so tests and ``--mock`` runs can swap either one out.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from pydantic import BaseModel, Field

from sourcepkg.core.models.action import Action, Receipt


class ExecutionContext(BaseModel):
    """An action plus the package environment it runs under."""

    action: Action
    environment: dict[str, str] = Field(default_factory=dict)

    @property
    def working_dir(self) -> str:
        return str(self.action.params.get("cwd") or ".")


class Adapter(ABC):
    """A collaborator the stage controller dispatches to.

    ``execute`` reports every outcome as a Receipt and does not raise;
    the registry still turns a stray exception into a failed receipt.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry key: ``shell`` or ``remote_file``."""

    @abstractmethod
    def validate(self, context: ExecutionContext) -> tuple[bool, str]:
        """Check params before running. Returns ``(ok, error_message)``."""

    @abstractmethod
    def execute(self, context: ExecutionContext) -> Receipt:
        """Perform the action."""

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r}>"
