"""
Run configuration and the pipeline driver.

``Builder`` accumulates options fluently; ``generate`` validates them, locates
libclang if no front end was injected, then runs ingestion, resolution and
generation in order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import IO, List, Optional, Tuple

from ctbindgen.config import ENUM_OVERRIDE_KINDS
from ctbindgen.errors import ConfigurationError
from ctbindgen.frontend import Frontend, dump_ast, locate_frontend, parse_headers
from ctbindgen.gen import GenOptions, gen_mod
from ctbindgen.items import Item, LinkType
from ctbindgen.log import Logger, NullLogger, phase_scope
from ctbindgen.resolver import ResolverOptions, resolve
from ctbindgen.types import IKind
from ctbindgen.writer import render_module, write_bindings, write_bindings_file

logger = logging.getLogger(__name__)


@dataclass
class BindgenOptions:
    match_pat: List[str] = field(default_factory=list)
    builtins: bool = False
    rust_enums: bool = True
    links: List[Tuple[str, LinkType]] = field(default_factory=list)
    emit_ast: bool = False
    fail_on_unknown_type: bool = True
    override_enum_ty: str = ""
    clang_args: List[str] = field(default_factory=list)
    derive_debug: bool = True
    derive_copy: bool = True
    link_prefix: str = ""
    functions: bool = True
    enums: bool = True
    globals: bool = True
    types: bool = True
    layout_checks: bool = True

    def enum_override(self) -> Optional[IKind]:
        if not self.override_enum_ty:
            return None
        kind = ENUM_OVERRIDE_KINDS.get(self.override_enum_ty)
        if kind is None:
            choices = ", ".join(sorted(ENUM_OVERRIDE_KINDS))
            raise ConfigurationError(
                f"unknown enum override `{self.override_enum_ty}` (expected one of {choices})"
            )
        return kind

    def resolver_options(self) -> ResolverOptions:
        return ResolverOptions(
            match_pat=list(self.match_pat),
            builtins=self.builtins,
            fail_on_unknown_type=self.fail_on_unknown_type,
            enum_override=self.enum_override(),
        )

    def gen_options(self) -> GenOptions:
        return GenOptions(
            native_enums=self.rust_enums,
            derive_copy=self.derive_copy,
            derive_debug=self.derive_debug,
            links=list(self.links),
            link_prefix=self.link_prefix,
            functions=self.functions,
            enums=self.enums,
            globals=self.globals,
            types=self.types,
            layout_checks=self.layout_checks,
        )


@dataclass
class Bindings:
    items: List[Item]
    attributes: List[str]
    ast_dump: Optional[str] = None

    @classmethod
    def generate(
        cls,
        options: BindgenOptions,
        logger_: Optional[Logger] = None,
        frontend: Optional[Frontend] = None,
    ) -> "Bindings":
        sink = logger_ or NullLogger()

        with phase_scope("configure"):
            resolver_opts = options.resolver_options()
            gen_opts = options.gen_options()
            if frontend is None:
                frontend = locate_frontend()
            else:
                frontend.ensure_loaded()

        with phase_scope("ingest"):
            unit = parse_headers(frontend.clang_args() + list(options.clang_args), sink)
            ast_dump = dump_ast(unit.cursor) if options.emit_ast else None

        with phase_scope("resolve"):
            graph = resolve(unit.cursor, resolver_opts, sink)

        with phase_scope("generate"):
            items, attributes = gen_mod(gen_opts, graph, sink)

        return cls(items=items, attributes=attributes, ast_dump=ast_dump)

    def to_string(self) -> str:
        return render_module(self.items, self.attributes)

    def write(self, stream: IO[str]) -> None:
        write_bindings(self.to_string(), stream)

    def write_to_file(self, path: str) -> None:
        write_bindings_file(self.to_string(), path)


class Builder:
    """Fluent front for ``BindgenOptions``; every setter returns ``self``."""

    def __init__(self, frontend: Optional[Frontend] = None) -> None:
        self.options = BindgenOptions()
        self.logger: Optional[Logger] = None
        self.frontend = frontend

    def header(self, header: str) -> "Builder":
        self.options.clang_args.append(header)
        return self

    def clang_arg(self, arg: str) -> "Builder":
        self.options.clang_args.append(arg)
        return self

    def match_pat(self, pat: str) -> "Builder":
        self.options.match_pat.append(pat)
        return self

    def link(self, library: str, link_type: LinkType = LinkType.DYNAMIC) -> "Builder":
        self.options.links.append((library, link_type))
        return self

    def forbid_unknown_types(self) -> "Builder":
        self.options.fail_on_unknown_type = True
        return self

    def allow_unknown_types(self) -> "Builder":
        self.options.fail_on_unknown_type = False
        return self

    def builtins(self) -> "Builder":
        self.options.builtins = True
        return self

    def derive_debug(self, value: bool) -> "Builder":
        self.options.derive_debug = value
        return self

    def derive_copy(self, value: bool) -> "Builder":
        self.options.derive_copy = value
        return self

    def rust_enums(self, value: bool) -> "Builder":
        self.options.rust_enums = value
        return self

    def log(self, sink: Logger) -> "Builder":
        self.logger = sink
        return self

    def override_enum_ty(self, ty: str) -> "Builder":
        self.options.override_enum_ty = ty
        return self

    def emit_ast(self, value: bool) -> "Builder":
        self.options.emit_ast = value
        return self

    def link_prefix(self, value: str) -> "Builder":
        self.options.link_prefix = value
        return self

    def emit_functions(self, value: bool) -> "Builder":
        self.options.functions = value
        return self

    def emit_enums(self, value: bool) -> "Builder":
        self.options.enums = value
        return self

    def emit_globals(self, value: bool) -> "Builder":
        self.options.globals = value
        return self

    def emit_types(self, value: bool) -> "Builder":
        self.options.types = value
        return self

    def layout_checks(self, value: bool) -> "Builder":
        self.options.layout_checks = value
        return self

    def generate(self) -> Bindings:
        return Bindings.generate(self.options, self.logger, self.frontend)


def builder(frontend: Optional[Frontend] = None) -> Builder:
    return Builder(frontend)
