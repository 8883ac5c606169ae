"""Diagnostic sinks and structured logging helpers.

The pipeline reports user-facing diagnostics through a ``Logger`` sink with
two methods (``error`` and ``warn``) so embedders can capture them silently or
forward them wherever they like. Internal tracing uses the stdlib ``logging``
module, optionally formatted with run/phase correlation fields.
"""

from __future__ import annotations

import contextvars
import logging
import time
import uuid
from contextlib import contextmanager
from typing import IO, Iterator, List, NamedTuple, Optional

_log = logging.getLogger(__name__)

_RUN_ID_VAR: contextvars.ContextVar[str] = contextvars.ContextVar(
    "run_id", default="-"
)
# configure, ingest, resolve or generate while Bindings.generate runs
_PHASE_VAR: contextvars.ContextVar[str] = contextvars.ContextVar(
    "phase", default="-"
)


class Diagnostic(NamedTuple):
    level: str
    message: str
    phase: str = "-"


class Logger:
    """Diagnostic sink interface."""

    def error(self, msg: str) -> None:
        raise NotImplementedError

    def warn(self, msg: str) -> None:
        raise NotImplementedError


class NullLogger(Logger):
    def error(self, msg: str) -> None:
        pass

    def warn(self, msg: str) -> None:
        pass


class StdLogger(Logger):
    """Forward diagnostics to a stdlib logger (``ctbindgen`` by default)."""

    def __init__(self, name: str = "ctbindgen") -> None:
        self._log = logging.getLogger(name)

    def error(self, msg: str) -> None:
        self._log.error("%s", msg)

    def warn(self, msg: str) -> None:
        self._log.warning("%s", msg)


class RecordingLogger(Logger):
    """Keep every diagnostic in memory, in arrival order, with its phase."""

    def __init__(self) -> None:
        self.records: List[Diagnostic] = []

    def error(self, msg: str) -> None:
        self.records.append(Diagnostic("error", msg, get_phase()))

    def warn(self, msg: str) -> None:
        self.records.append(Diagnostic("warning", msg, get_phase()))

    @property
    def errors(self) -> List[str]:
        return [d.message for d in self.records if d.level == "error"]

    @property
    def warnings(self) -> List[str]:
        return [d.message for d in self.records if d.level == "warning"]


class _RunContextFilter(logging.Filter):
    """Stamp records with the run id and the pipeline phase that emitted them."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.run_id = _RUN_ID_VAR.get()
        record.phase = _PHASE_VAR.get()
        return True


_FORMAT = "ctbindgen[%(run_id)s] %(phase)s %(levelname)s %(name)s: %(message)s"


def configure_structured_logging(level: int = logging.INFO, stream: Optional[IO[str]] = None) -> logging.Handler:
    """Route ``ctbindgen`` records to ``stream`` (stderr) tagged with run and phase.

    Calling it again replaces the handler installed by the previous call, so
    repeated runs in one process do not duplicate output.
    """
    log = logging.getLogger("ctbindgen")
    for old in [h for h in log.handlers if getattr(h, "_ctbindgen_run", False)]:
        log.removeHandler(old)
    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(_FORMAT))
    handler.addFilter(_RunContextFilter())
    handler._ctbindgen_run = True  # type: ignore[attr-defined]
    log.addHandler(handler)
    log.setLevel(level)
    return handler


def set_run_id(run_id: Optional[str] = None) -> str:
    """Set the id every record of this run carries; a short random one by default."""
    value = run_id or uuid.uuid4().hex[:8]
    _RUN_ID_VAR.set(value)
    return value


def get_run_id() -> str:
    return _RUN_ID_VAR.get()


def get_phase() -> str:
    return _PHASE_VAR.get()


@contextmanager
def phase_scope(phase: str) -> Iterator[None]:
    """Attribute logs and diagnostics to ``phase`` and trace how long it took."""
    token = _PHASE_VAR.set(phase)
    started = time.perf_counter()
    try:
        yield
    finally:
        _log.debug("%s finished in %.3fs", phase, time.perf_counter() - started)
        _PHASE_VAR.reset(token)
