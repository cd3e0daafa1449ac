"""Release identifier for WarbandLedger and dev-build detection."""
from __future__ import annotations

import os
import re
from typing import Mapping, Optional

__all__ = ["__version__", "is_dev_build", "DEV_MODE_ENV_VAR"]

__version__ = "1.4.0"
DEV_MODE_ENV_VAR = "WARBAND_LEDGER_DEV_MODE"

_DEV_SEGMENT = re.compile(r"(?:^|[.\-+])dev\d*(?=$|[.\-+])")
_ENV_TRUE = frozenset({"1", "true", "yes", "on"})
_ENV_FALSE = frozenset({"0", "false", "no", "off"})


def is_dev_build(version: Optional[str] = None, environ: Optional[Mapping[str, str]] = None) -> bool:
    """Return True for dev builds; ``WARBAND_LEDGER_DEV_MODE`` overrides the version check."""

    env = os.environ if environ is None else environ
    override = (env.get(DEV_MODE_ENV_VAR) or "").strip().lower()
    if override in _ENV_TRUE:
        return True
    if override in _ENV_FALSE:
        return False
    identifier = (version or __version__ or "").strip().lower()
    return bool(_DEV_SEGMENT.search(identifier))
