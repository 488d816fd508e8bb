"""
PackageState — the persisted outcome of the last pipeline run.

One record per package name, serialized to JSON through the state
store under ``source-packages/<name>``. The record carries the inputs
that produced it (version and configure) next to the four stage flags,
so the controller can tell when a flag no longer applies.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

from sourcepkg.core.models.package import ConfigureValue

if TYPE_CHECKING:
    from sourcepkg.core.models.package import SourcePackage


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class PackageState(BaseModel):
    """Last known outcome for a source package.

    A fresh record (nothing stored yet) has every flag false and no
    version or configure value.
    """

    # ── Schema ───────────────────────────────────────────────────
    schema_version: int = 1

    # ── Inputs that produced the flags ───────────────────────────
    name: str
    version: str | None = None
    configure: ConfigureValue = None

    # ── Stage flags ──────────────────────────────────────────────
    unpacked: bool = False
    configured: bool = False
    built: bool = False
    installed: bool = False

    updated_at: str = Field(default_factory=_now_iso)

    @classmethod
    def for_package(cls, package: SourcePackage) -> PackageState:
        """The record a run against ``package`` starts writing."""
        return cls(
            name=package.name,
            version=package.version,
            configure=package.configure,
        )

    def reset(self) -> None:
        """Forget every completed stage so the package goes from nothing again."""
        self.unpacked = self.configured = self.built = self.installed = False
        self.version = None
        self.configure = None

    def touch(self) -> None:
        """Update the updated_at timestamp."""
        self.updated_at = _now_iso()

    @property
    def flags(self) -> dict[str, bool]:
        return {
            "unpacked": self.unpacked,
            "configured": self.configured,
            "built": self.built,
            "installed": self.installed,
        }
