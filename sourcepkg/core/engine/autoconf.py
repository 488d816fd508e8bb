"""
Autoconf switches — turn a configure value into command-line flags.

    switches("debug")                      -> "--debug"
    switches("--enable-shared")            -> "--enable-shared"
    switches({"prefix": "/usr/local"})     -> "--prefix=/usr/local"
    switches({"with-ssl": True})           -> "--with-ssl"
    switches(["debug", {"prefix": "/x"}])  -> "--debug --prefix=/x"

Never raises: anything that cannot be rendered contributes nothing.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

# Already a switch (leading dash) or blank: pass through untouched.
_PASSTHROUGH = re.compile(r"^\s*(-|$)")

_SCALARS = (str, int, float)


def switches(config: Any = None) -> str:
    """Synthesize the switch string for a configure value.

    ``None``, ``False`` and ``True`` yield no switches (``True`` only means
    "run the configure command").
    """
    if isinstance(config, bool) or config is None:
        return ""
    if isinstance(config, str):
        return plain_switch(config).strip()
    if isinstance(config, Mapping):
        return _join(value_switch(key, value) for key, value in config.items())
    if isinstance(config, (list, tuple)):
        return _join(_item_switch(item) for item in config)
    return ""


def plain_switch(switch: Any) -> str:
    """``debug`` -> ``--debug``; ``-g`` and ``--debug`` are kept as given."""
    if isinstance(switch, bool) or not isinstance(switch, _SCALARS):
        return ""
    text = str(switch)
    if _PASSTHROUGH.match(text):
        return text
    return f"--{text}"


def value_switch(key: Any, value: Any) -> str:
    """``(prefix, /usr)`` -> ``--prefix=/usr``; a ``True`` value gives a plain switch.

    ``False``, ``None`` and values that are not scalars give nothing.
    """
    if value is None or value is False:
        return ""
    if not isinstance(key, _SCALARS) or isinstance(key, bool):
        return ""
    if value is True:
        return plain_switch(key)
    if not isinstance(value, _SCALARS):
        return ""
    return f"--{key}={value}"


def _item_switch(item: Any) -> str:
    if item is None or isinstance(item, bool):
        return ""
    if isinstance(item, (list, tuple)) and len(item) == 2:
        return value_switch(item[0], item[1])
    if isinstance(item, (list, tuple, Mapping)):
        return switches(item)
    return plain_switch(item)


def _join(parts) -> str:
    return " ".join(p.strip() for p in parts if p and p.strip())
