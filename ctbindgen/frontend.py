"""
libclang front end: locating the native library, parsing headers, and the
small cursor/type helpers shared by the resolver.
"""

from __future__ import annotations

import glob
import logging
import os
import subprocess
import sys
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from clang import cindex
from clang.cindex import Cursor, CursorKind, TypeKind

from ctbindgen.config import (
    LIBCLANG_CANDIDATES,
    SEARCH_LIST_END,
    SEARCH_LIST_START,
    SEARCH_PATH_COMPILERS,
)
from ctbindgen.errors import ConfigurationError, IngestionError
from ctbindgen.log import Logger

logger = logging.getLogger(__name__)

K_UNION_DECL = getattr(CursorKind, "UNION_DECL", None)
K_PACKED_ATTR = getattr(CursorKind, "PACKED_ATTR", None)
T_ELABORATED = getattr(TypeKind, "ELABORATED", None)
T_ATTRIBUTED = getattr(TypeKind, "ATTRIBUTED", None)

_SEVERITY: Dict[int, str] = {
    cindex.Diagnostic.Ignored: "ignored",
    cindex.Diagnostic.Note: "note",
    cindex.Diagnostic.Warning: "warning",
    cindex.Diagnostic.Error: "error",
    cindex.Diagnostic.Fatal: "fatal",
}


# -- locating libclang -------------------------------------------------------


def _library_loads() -> bool:
    try:
        cindex.conf.lib
    except cindex.LibclangError as exc:
        logger.debug("libclang did not load: %s", exc)
        return False
    return True


def _candidate_files(patterns: Iterable[str]) -> List[str]:
    out: List[str] = []
    for pat in patterns:
        if any(ch in pat for ch in "*?["):
            out.extend(sorted(glob.glob(pat), reverse=True))
        elif os.path.isfile(pat):
            out.append(pat)
    return out


def try_set_libclang(
    environ: Optional[Mapping[str, str]] = None,
    candidates: Optional[Sequence[str]] = None,
) -> Optional[str]:
    """Point ``clang.cindex`` at a usable libclang and return what was used.

    Order: ``LIBCLANG_FILE``, ``LIBCLANG_PATH``, the default loader, then the
    platform candidate list. Returns None when nothing loads.
    """
    if cindex.Config.loaded:
        return cindex.Config.library_file or "<default>"

    env = os.environ if environ is None else environ
    lib_file = env.get("LIBCLANG_FILE")
    lib_path = env.get("LIBCLANG_PATH")

    if lib_file and os.path.exists(lib_file):
        cindex.Config.set_library_file(lib_file)
        return lib_file if _library_loads() else None
    if lib_path and os.path.isdir(lib_path):
        cindex.Config.set_library_path(lib_path)
        return lib_path if _library_loads() else None

    if _library_loads():
        return cindex.Config.library_file or "<default>"

    if candidates is None:
        candidates = LIBCLANG_CANDIDATES.get(sys.platform, ())
    for p in _candidate_files(candidates):
        cindex.Config.set_library_file(p)
        if _library_loads():
            return p
    return None


def parse_search_list(text: str) -> List[str]:
    """Extract system include directories from ``cc -v -E`` output."""
    paths: List[str] = []
    inside = False
    for line in text.splitlines():
        if SEARCH_LIST_START in line:
            inside = True
            continue
        if not inside:
            continue
        if line.startswith(SEARCH_LIST_END):
            break
        path = line.strip()
        if path.endswith("(framework directory)"):
            path = path[: -len("(framework directory)")].strip()
        if path:
            paths.append(path)
    return paths


def discover_search_paths(
    compilers: Optional[Sequence[str]] = None,
    runner: Optional[Callable[..., subprocess.CompletedProcess]] = None,
) -> List[str]:
    run = runner or subprocess.run
    null_file = "NUL" if sys.platform == "win32" else "/dev/null"
    for exe in compilers if compilers is not None else SEARCH_PATH_COMPILERS:
        cmd = [exe, "-v", "-E", "-x", "c", null_file]
        try:
            p = run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True, timeout=10)
        except (OSError, subprocess.SubprocessError) as exc:
            logger.debug("could not run %s: %s", exe, exc)
            continue
        paths = parse_search_list(p.stderr or "")
        if paths:
            logger.debug("search paths from %s: %s", exe, paths)
            return paths
    logger.warning("No compiler reported system include directories")
    return []


@dataclass
class Frontend:
    """A located libclang plus the system include directories to pass it."""

    library_file: Optional[str] = None
    search_paths: List[str] = field(default_factory=list)

    def clang_args(self) -> List[str]:
        args: List[str] = []
        for d in self.search_paths:
            args.append("-idirafter")
            args.append(d)
        return args

    def ensure_loaded(self) -> None:
        if self.library_file and not cindex.Config.loaded:
            if os.path.isdir(self.library_file):
                cindex.Config.set_library_path(self.library_file)
            elif os.path.isfile(self.library_file):
                cindex.Config.set_library_file(self.library_file)
        if not _library_loads():
            raise ConfigurationError("No libclang found, is it installed?")


def locate_frontend(
    environ: Optional[Mapping[str, str]] = None,
    candidates: Optional[Sequence[str]] = None,
    compilers: Optional[Sequence[str]] = None,
    runner: Optional[Callable[..., subprocess.CompletedProcess]] = None,
) -> Frontend:
    library = try_set_libclang(environ, candidates)
    if library is None:
        raise ConfigurationError("No libclang found, is it installed?")
    logger.info("Using libclang from %s", library)
    return Frontend(
        library_file=library,
        search_paths=discover_search_paths(compilers, runner),
    )


# -- parsing -----------------------------------------------------------------


@dataclass
class FrontendDiagnostic:
    severity: str
    message: str
    location: str

    def __str__(self) -> str:
        return f"{self.location}: {self.severity}: {self.message}"


@dataclass
class ParsedUnit:
    tu: cindex.TranslationUnit
    diagnostics: List[FrontendDiagnostic]

    @property
    def cursor(self) -> Cursor:
        return self.tu.cursor


def _diag_location(d: cindex.Diagnostic) -> str:
    loc = d.location
    if loc is None or loc.file is None:
        return "<command line>"
    return f"{loc.file.name}:{loc.line}:{loc.column}"


def parse_headers(
    clang_args: Sequence[str],
    sink: Logger,
    index: Optional[cindex.Index] = None,
) -> ParsedUnit:
    """Run libclang over ``clang_args`` (headers are ordinary arguments).

    Every diagnostic goes to ``sink``; only a fatal one, or libclang refusing
    to produce a translation unit, fails ingestion.
    """
    idx = index or cindex.Index.create()
    args = list(clang_args)
    try:
        tu = idx.parse(
            None,
            args=args,
            options=cindex.TranslationUnit.PARSE_SKIP_FUNCTION_BODIES,
        )
    except cindex.TranslationUnitLoadError as exc:
        msg = f"clang could not parse `{' '.join(args)}`: {exc}"
        sink.error(msg)
        raise IngestionError(msg) from exc

    diagnostics: List[FrontendDiagnostic] = []
    fatal = False
    for d in tu.diagnostics:
        fd = FrontendDiagnostic(
            severity=_SEVERITY.get(d.severity, "note"),
            message=d.spelling,
            location=_diag_location(d),
        )
        diagnostics.append(fd)
        if d.severity >= cindex.Diagnostic.Error:
            sink.error(str(fd))
        elif d.severity == cindex.Diagnostic.Warning:
            sink.warn(str(fd))
        if d.severity >= cindex.Diagnostic.Fatal:
            fatal = True

    if fatal:
        raise IngestionError("clang reported a fatal error", diagnostics)

    logger.info("Parsed translation unit with %d diagnostics", len(diagnostics))
    return ParsedUnit(tu=tu, diagnostics=diagnostics)


def dump_ast(cursor: Cursor, keep: Optional[Callable[[Cursor], bool]] = None) -> str:
    """Indented dump of the cursor tree below ``cursor`` for debugging."""
    lines: List[str] = []

    def walk(cur: Cursor, depth: int) -> None:
        try:
            ty = cur.type.spelling
        except Exception:
            ty = ""
        lines.append(
            "{}{} {!r} <{}> type={!r}".format("  " * depth, cur.kind.name, cur.spelling, loc_str(cur), ty)
        )
        for sub in cur.get_children():
            walk(sub, depth + 1)

    for top in cursor.get_children():
        if keep is None or keep(top):
            walk(top, 0)
    return "\n".join(lines) + ("\n" if lines else "")


# -- cursor and type helpers --------------------------------------------------


def loc_str(cur: Cursor) -> str:
    try:
        loc = cur.location
        f = str(loc.file) if loc.file else "<unknown>"
        return f"{f}:{loc.line}:{loc.column}"
    except Exception:
        return "<unknown>:0:0"


def origin_file(cur: Cursor) -> Optional[str]:
    try:
        f = cur.location.file
    except Exception:
        return None
    return f.name if f else None


def is_definition(cur: Cursor) -> bool:
    try:
        return cur.is_definition()
    except Exception:
        return False


def is_static(cur: Cursor) -> bool:
    try:
        return cur.storage_class == cindex.StorageClass.STATIC
    except Exception:
        return False


def canonical_kind(t: cindex.Type) -> TypeKind:
    try:
        return t.get_canonical().kind
    except Exception:
        return t.kind


_QUAL_PREFIX = ("const ", "volatile ", "restrict ")
_TAG_PREFIX = ("struct ", "enum ", "union ")


def strip_type_name(spelling: str) -> str:
    """Drop qualifiers and tag keywords; anonymous spellings become ``""``."""
    s = (spelling or "").strip()
    if "(unnamed" in s or "(anonymous" in s or "unnamed at" in s:
        return ""

    changed = True
    while changed:
        changed = False
        for q in _QUAL_PREFIX:
            if s.startswith(q):
                s = s[len(q) :].strip()
                changed = True

    for p in _TAG_PREFIX:
        if s.startswith(p):
            s = s[len(p) :].strip()

    return s


def decl_usr(cur: Cursor) -> str:
    try:
        return cur.get_usr() or ""
    except Exception:
        return ""
