"""Generate Python ctypes bindings from C headers via libclang."""

from ctbindgen.builder import BindgenOptions, Bindings, Builder, builder
from ctbindgen.errors import (
    BindgenError,
    ConfigurationError,
    GenerationError,
    IngestionError,
    NameCollisionError,
    ResolutionError,
    SerializationError,
    UnknownTypeError,
)
from ctbindgen.frontend import Frontend, locate_frontend
from ctbindgen.items import LinkType
from ctbindgen.log import Diagnostic, Logger, NullLogger, RecordingLogger, StdLogger

__version__ = "0.1.0"

__all__ = [
    "BindgenError",
    "BindgenOptions",
    "Bindings",
    "Builder",
    "ConfigurationError",
    "Diagnostic",
    "Frontend",
    "GenerationError",
    "IngestionError",
    "LinkType",
    "Logger",
    "NameCollisionError",
    "NullLogger",
    "RecordingLogger",
    "ResolutionError",
    "SerializationError",
    "StdLogger",
    "UnknownTypeError",
    "builder",
    "locate_frontend",
]
