"""Shared helpers for tests that drive libclang or execute generated modules."""

from __future__ import annotations

import os
import tempfile
import unittest
from typing import Callable, Dict, Optional, Sequence

from ctbindgen.builder import Bindings, Builder
from ctbindgen.frontend import Frontend, parse_headers, try_set_libclang
from ctbindgen.log import NullLogger
from ctbindgen.resolver import ResolverOptions, TypeResolver
from ctbindgen.types import DeclGraph, Global, Typedef


def _find_libclang() -> Optional[str]:
    try:
        return try_set_libclang()
    except Exception:
        return None


LIBCLANG = _find_libclang()

requires_libclang = unittest.skipUnless(LIBCLANG, "libclang is not available")


class HeaderTestCase(unittest.TestCase):
    """Writes headers into a scratch directory and runs the pipeline on them."""

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.dir = self._tmp.name

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def header(self, name: str, text: str) -> str:
        path = os.path.join(self.dir, name)
        with open(path, "w", encoding="utf-8") as f:
            f.write(text)
        return path

    def builder(self, name: str, text: str) -> Builder:
        return Builder(frontend=Frontend(library_file=LIBCLANG)).header(self.header(name, text))

    def generate(
        self,
        text: str,
        configure: Optional[Callable[[Builder], Builder]] = None,
        name: str = "input.h",
    ) -> Bindings:
        b = self.builder(name, text)
        if configure is not None:
            configure(b)
        return b.generate()

    def resolve(
        self,
        text: str,
        options: Optional[ResolverOptions] = None,
        sink=None,
        name: str = "input.h",
        args: Sequence[str] = (),
    ) -> DeclGraph:
        path = self.header(name, text)
        unit = parse_headers([path] + list(args), sink or NullLogger())
        return TypeResolver(options or ResolverOptions(), sink or NullLogger()).resolve(unit.cursor)


def by_name(graph: DeclGraph) -> Dict[str, Global]:
    """Index by name; a record or enum wins over the typedef that adopted its name."""
    out: Dict[str, Global] = {}
    for g in graph:
        if isinstance(g, Typedef) and g.name in out:
            continue
        out[g.name] = g
    return out


def exec_module(text: str) -> Dict[str, object]:
    ns: Dict[str, object] = {"__name__": "generated_bindings"}
    exec(compile(text, "<bindings>", "exec"), ns)
    return ns
