"""
SourcePackage model — the desired state of one source install.

Loaded from package.yml (or built directly by callers), this is what
the stage controller converges the machine towards. Attribute validation
happens once, when the model is constructed.
"""

from __future__ import annotations

import posixpath
import re
from enum import Enum
from typing import Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

# bool | str | list | dict | None. Drives both "should configure" and
# the switches appended to the configure command.
ConfigureValue = bool | str | list[Any] | dict[str, Any] | None


class PackageDefinitionError(ValueError):
    """The package definition cannot drive the pipeline."""


class ArchiveType(str, Enum):
    TAR = "tar"
    GZIP = "gzip"
    BZIP2 = "bzip2"
    ZIP = "zip"
    UNKNOWN = "unknown"


# Checked in order; the first match wins.
ARCHIVE_PATTERNS: dict[ArchiveType, re.Pattern[str]] = {
    ArchiveType.TAR: re.compile(r"\.tar$", re.IGNORECASE),
    ArchiveType.GZIP: re.compile(r"\.(tgz|tar\.gz)$", re.IGNORECASE),
    ArchiveType.BZIP2: re.compile(r"\.tar\.bz(ip)?2$", re.IGNORECASE),
    ArchiveType.ZIP: re.compile(r"\.zip$", re.IGNORECASE),
}


class PackageAction(str, Enum):
    """Operations a source package supports."""

    DOWNLOAD = "download"
    UNPACK = "unpack"
    CONFIGURE = "configure"
    BUILD = "build"
    INSTALL = "install"
    UPGRADE = "upgrade"
    FORCE_INSTALL = "force_install"


def classify_archive(filename: str | None) -> ArchiveType:
    """Classify an archive by its file extension."""
    if not filename:
        return ArchiveType.UNKNOWN
    for archive_type, pattern in ARCHIVE_PATTERNS.items():
        if pattern.search(filename):
            return archive_type
    return ArchiveType.UNKNOWN


class SourcePackage(BaseModel):
    """Desired state of a package built from a source archive.

    Only ``name`` is required. ``source`` may be left unset while a
    definition is being assembled, but the download stage refuses to run
    without it.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str
    source: str | None = None
    version: str | None = None
    cookbook: str | None = None
    checksum: str | None = None

    unpacks_to_override: str | None = Field(default=None, alias="unpacks_to")

    configure: ConfigureValue = True
    unpack_command: str | None = None
    configure_command: str = "./configure"
    build_command: str = "make"
    install_command: str = "make install"

    environment: dict[str, str] = Field(default_factory=dict)
    action: PackageAction = PackageAction.INSTALL

    @field_validator("name")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        # name is one path segment of the state key and build directory
        if not value.strip() or value in (".", "..") or "/" in value or "\\" in value:
            raise ValueError(f"invalid package name {value!r}")
        return value

    # ── Derived attributes ───────────────────────────────────────

    @property
    def filename(self) -> str | None:
        """Basename of the source URI (query string and fragment dropped)."""
        if not self.source:
            return None
        path = urlparse(self.source).path or self.source
        return posixpath.basename(path.rstrip("/")) or None

    @property
    def archive_type(self) -> ArchiveType:
        return classify_archive(self.filename)

    @property
    def unpacks_to(self) -> str:
        """Directory the archive expands into.

        Defaults to the filename without its archive suffix.

        Raises:
            PackageDefinitionError: No source, or an unknown archive type
                and no explicit ``unpacks_to``.
        """
        if self.unpacks_to_override:
            return self.unpacks_to_override

        filename = self.filename
        if not filename:
            raise PackageDefinitionError(
                f"Package '{self.name}' has no source; cannot derive unpacks_to"
            )

        archive_type = self.archive_type
        if archive_type is ArchiveType.UNKNOWN:
            raise PackageDefinitionError(
                f"Cannot derive unpack directory for {filename} of type "
                f"{archive_type.value}; set unpacks_to explicitly"
            )
        return ARCHIVE_PATTERNS[archive_type].sub("", filename)

    def __str__(self) -> str:
        return f"source_package[{self.name}]"
