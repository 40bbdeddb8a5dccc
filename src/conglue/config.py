# src/conglue/config.py
from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Tuple

import yaml

from conglue._constants import DEFAULT_PRECISION, EMPTY_HEADER, HEADER_LINES

LOG = logging.getLogger("cgl.config")

_KNOWN_KEYS = {"precision", "prebox_header", "postbox_header", "default_masses"}


@dataclass(slots=True)
class Config:
    """Defaults shared by writers, builders and the ASE conversion."""

    precision: int = DEFAULT_PRECISION
    prebox_header: Tuple[str, str] = EMPTY_HEADER
    postbox_header: Tuple[str, str] = EMPTY_HEADER
    default_masses: Dict[str, float] = field(default_factory=dict)


def _header(raw: Any, key: str) -> Tuple[str, str]:
    if raw is None:
        return EMPTY_HEADER
    # allow a single string for the first line
    lines = [raw] if isinstance(raw, str) else list(raw)
    if len(lines) > HEADER_LINES:
        raise ValueError(f"{key}: at most {HEADER_LINES} lines, got {len(lines)}")
    lines = ["" if x is None else str(x) for x in lines]
    lines += [""] * (HEADER_LINES - len(lines))
    return (lines[0], lines[1])


def _precision(raw: Any) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
        raise ValueError(f"precision: expected a non-negative integer, got {raw!r}")
    return raw


def check_masses(raw: Any) -> Dict[str, float]:
    """Validate a symbol -> mass mapping; None gives an empty one."""
    if raw is None:
        return {}
    if not isinstance(raw, Mapping):
        raise ValueError(f"default_masses: expected a mapping symbol -> mass, got {type(raw).__name__}")
    masses = {}
    for symbol, mass in raw.items():
        try:
            value = float(mass)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"default_masses[{symbol!r}]: not a number: {mass!r}") from exc
        if not math.isfinite(value) or value < 0:
            raise ValueError(f"default_masses[{symbol!r}]: must be finite and non-negative, got {value}")
        masses[str(symbol)] = value
    return masses


def load_config(path: str | Path) -> Config:
    """
    Read a YAML config. All keys are optional:

      precision: 8
      prebox_header: ["generated by conglue", ""]
      postbox_header: ["", ""]
      default_masses: {Cu: 63.546, H: 1.008}
    """
    p = Path(path)
    cfg = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
    if not isinstance(cfg, dict):
        raise ValueError(f"{p}: expected a mapping at the top level")

    unknown = sorted(set(cfg) - _KNOWN_KEYS)
    if unknown:
        raise ValueError(f"{p}: unknown config key(s): {', '.join(map(str, unknown))}")

    config = Config(
        precision=_precision(cfg.get("precision", DEFAULT_PRECISION)),
        prebox_header=_header(cfg.get("prebox_header"), "prebox_header"),
        postbox_header=_header(cfg.get("postbox_header"), "postbox_header"),
        default_masses=check_masses(cfg.get("default_masses")),
    )
    LOG.debug("loaded config from %s: precision=%d", p, config.precision)
    return config
