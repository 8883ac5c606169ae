from __future__ import annotations

import logging
from typing import IO, List

from ctbindgen.errors import ConfigurationError, SerializationError
from ctbindgen.items import (
    AliasItem,
    ConstItem,
    EnumItem,
    Item,
    LinkBlock,
    StructItem,
)

logger = logging.getLogger(__name__)


class Out:
    def __init__(self) -> None:
        self.lines: List[str] = []
        self.ind: int = 0
        self._block = False

    def w(self, s: str = "") -> None:
        self.lines.append(("    " * self.ind) + s if s else "")

    def start(self, block: bool) -> None:
        """Separate the next chunk: two blank lines around blocks, none between one-liners."""
        if self.lines and (block or self._block):
            self.w()
            self.w()
        self._block = block

    def get(self) -> str:
        while self.lines and not self.lines[-1]:
            self.lines.pop()
        return "\n".join(self.lines) + "\n"


def _q(s: str) -> str:
    return '"' + s.replace("\\", "\\\\").replace('"', '\\"') + '"'


def _stub(o: Out, s: StructItem) -> None:
    o.start(True)
    o.w(f"class {s.name}({', '.join(s.bases + [s.base])}):")
    o.ind += 1
    if s.pack is None and s.min_align is None and not s.anonymous:
        o.w("pass")
    if s.pack is not None:
        # newer ctypes wants the layout named whenever _pack_ is set
        o.w('_layout_ = "ms"')
        o.w(f"_pack_ = {s.pack}")
    if s.min_align is not None:
        o.w(f"_align_ = {s.min_align}")
    if s.anonymous:
        o.w(f"_anonymous_ = ({', '.join(_q(a) for a in s.anonymous)},)")
    o.ind -= 1


def _fields(o: Out, s: StructItem) -> None:
    o.start(True)
    if not s.fields and not s.padding:
        o.w(f"{s.name}._fields_ = []")
        return
    o.w(f"{s.name}._fields_ = [")
    o.ind += 1
    for f in s.fields:
        if f.bits is None:
            o.w(f"({_q(f.name)}, {f.ctype}),")
        else:
            o.w(f"({_q(f.name)}, {f.ctype}, {f.bits}),")
    if s.padding:
        o.w(f'("_padding_", ctypes.c_ubyte * {s.padding}),')
    o.ind -= 1
    o.w("]")


def _enum(o: Out, e: EnumItem) -> None:
    o.start(True)
    o.w(f"class {e.name}(enum.IntEnum):")
    o.ind += 1
    if not e.variants:
        o.w("pass")
    for name, value in e.variants:
        o.w(f"{name} = {value}")
    o.ind -= 1


def _link_block(o: Out, b: LinkBlock) -> None:
    o.start(True)
    o.w(f"class {b.name}(_LinkGroup):")
    o.ind += 1
    o.w(f"_library_ = {_q(b.library) if b.library is not None else 'None'}")
    o.w(f"_kind_ = {_q(b.kind.value)}")
    o.w(f"_prefix_ = {_q(b.prefix)}")
    if b.functions or b.variables:
        o.w()
    for fn in b.functions:
        line = f"{fn.name} = _extern({_q(fn.symbol)}, {fn.restype}, [{', '.join(fn.argtypes)}])"
        if fn.variadic:
            line += "  # variadic"
        o.w(line)
    for var in b.variables:
        if var.mutable:
            o.w(f"{var.name} = _global({_q(var.symbol)}, {var.ctype})")
        else:
            o.w(f"{var.name} = _global({_q(var.symbol)}, {var.ctype}, mutable=False)")
    o.ind -= 1


def render_module(items: List[Item], attributes: List[str]) -> str:
    """Python source for the generated module.

    Record classes are declared up front so any item can name them; each
    record's ``_fields_`` is assigned at its position in ``items``, which the
    generator has already ordered by by-value dependencies.
    """
    o = Out()
    for attr in attributes:
        o.start(True)
        for line in attr.splitlines():
            o.w(line)

    structs = [it for it in items if isinstance(it, StructItem)]
    for s in structs:
        _stub(o, s)

    links: List[LinkBlock] = []
    for it in items:
        if isinstance(it, StructItem):
            if it.complete:
                _fields(o, it)
        elif isinstance(it, EnumItem):
            _enum(o, it)
        elif isinstance(it, AliasItem):
            o.start(False)
            o.w(f"{it.name} = {it.target}")
        elif isinstance(it, ConstItem):
            o.start(False)
            o.w(f"{it.name} = {it.value}")
        elif isinstance(it, LinkBlock):
            links.append(it)

    checks = [s for s in structs if s.check_layout]
    if checks:
        o.start(True)
        for s in checks:
            o.w(f"_check_layout({s.name}, {s.size}, {s.align})")

    for b in links:
        _link_block(o, b)

    return o.get()


def write_bindings(text: str, stream: IO[str]) -> None:
    try:
        stream.write(text)
        stream.flush()
    except (OSError, ValueError) as exc:
        raise SerializationError(f"could not write bindings: {exc}") from exc


def write_bindings_file(text: str, path: str) -> None:
    try:
        f = open(path, "w", encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(f"cannot open output `{path}`: {exc}") from exc
    with f:
        write_bindings(text, f)
    logger.info("Wrote %s", path)
