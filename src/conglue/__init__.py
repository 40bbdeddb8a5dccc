"""
conglue: read, build and write CON / CONVEL atomic-configuration files.

    from conglue import FrameBuilder, read_all_frames, write_con
"""

from conglue.builder import FrameBuilder
from conglue.config import Config, load_config
from conglue.errors import (
    BuildError,
    BuilderConsumedError,
    ConDecodeError,
    ConError,
    ConOpenError,
    IteratorExhaustedError,
    MaterializationError,
    UsageError,
    WriteError,
)
from conglue.frame import Atom, Frame
from conglue.io.reader import FrameIterator, iter_frames, read_all_frames, read_con_string, read_first_frame
from conglue.io.writer import FrameWriter, write_con, write_con_string

__version__ = "0.1.0"

__all__ = [
    "Atom",
    "Frame",
    "FrameBuilder",
    "FrameIterator",
    "FrameWriter",
    "Config",
    "load_config",
    "iter_frames",
    "read_all_frames",
    "read_con_string",
    "read_first_frame",
    "write_con",
    "write_con_string",
    "ConError",
    "ConOpenError",
    "ConDecodeError",
    "BuildError",
    "WriteError",
    "MaterializationError",
    "UsageError",
    "BuilderConsumedError",
    "IteratorExhaustedError",
]
