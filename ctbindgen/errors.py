from __future__ import annotations

from typing import List, Optional


class BindgenError(Exception):
    """Base class for every failure the pipeline reports."""


class ConfigurationError(BindgenError):
    """No usable front end, unusable option, or unopenable output."""


class ConfigValidationError(ConfigurationError):
    """Raised when strict run-file validation fails."""


class IngestionError(BindgenError):
    def __init__(self, msg: str, diagnostics: Optional[List[object]] = None) -> None:
        super().__init__(msg)
        self.msg = msg
        self.diagnostics = list(diagnostics or [])


class ResolutionError(BindgenError):
    def __init__(self, where: str, msg: str) -> None:
        super().__init__(f"{where}: {msg}")
        self.where = where
        self.msg = msg


class UnknownTypeError(ResolutionError):
    def __init__(self, where: str, spelling: str) -> None:
        super().__init__(where, f"unsupported type `{spelling}`")
        self.spelling = spelling


class GenerationError(BindgenError):
    pass


class NameCollisionError(GenerationError):
    def __init__(self, name: str, first: str, second: str) -> None:
        super().__init__(
            f"name `{name}` is emitted for both {first} and {second}"
        )
        self.name = name
        self.first = first
        self.second = second


class SerializationError(BindgenError):
    pass
