"""
Package state persistence — load/save PackageState through a StateStore.

Records are JSON documents stored under ``source-packages/<name>``.
A missing or unreadable record yields a fresh state, so a damaged cache
costs a rebuild, never a crash.
"""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from sourcepkg.core.models.state import PackageState
from sourcepkg.core.persistence.store import StateStore, StoreError

logger = logging.getLogger(__name__)

STATE_NAMESPACE = "source-packages"


def state_key(name: str) -> str:
    """Store key of the record for package ``name``."""
    return f"{STATE_NAMESPACE}/{name}"


def load_package_state(store: StateStore, name: str) -> PackageState:
    """Load the stored state for a package.

    Returns:
        The stored PackageState, or a fresh one when nothing usable is stored.
    """
    key = state_key(name)
    if not store.has_key(key):
        logger.debug("No stored state for %s — starting fresh", key)
        return PackageState(name=name)

    try:
        data = json.loads(store.load(key))
        state = PackageState.model_validate(data)
    except (StoreError, json.JSONDecodeError, ValidationError) as e:
        logger.warning("Cannot load stored state %s: %s — starting fresh", key, e)
        return PackageState(name=name)

    logger.debug("Loaded stored source package state from %s", key)
    return state


def save_package_state(store: StateStore, state: PackageState) -> None:
    """Write the complete record for ``state.name``."""
    state.touch()
    key = state_key(state.name)
    content = json.dumps(state.model_dump(mode="json"), indent=2, ensure_ascii=False) + "\n"
    logger.debug("Serializing source package '%s' state to %s", state.name, key)
    store.store(key, content)
