"""
Domain models — Pydantic types for source package installs.

All models are re-exported here for convenient access:

    from sourcepkg.core.models import SourcePackage, PackageState, Action, Receipt
"""

from sourcepkg.core.models.action import Action, Receipt
from sourcepkg.core.models.package import (
    ArchiveType,
    PackageAction,
    PackageDefinitionError,
    SourcePackage,
    classify_archive,
)
from sourcepkg.core.models.state import PackageState

__all__ = [
    # action.py
    "Action",
    # package.py
    "ArchiveType",
    "PackageAction",
    "PackageDefinitionError",
    # state.py
    "PackageState",
    "Receipt",
    "SourcePackage",
    "classify_archive",
]
