# src/conglue/engine/__init__.py
"""
CON parse/format engine.

Byte-level decoding (memory-mapped), grammar and numeric rendering live here
and are reached by the rest of the package only through ``engine.api``.
"""

from .records import EngineError, OpenError, ParseError
from . import api
