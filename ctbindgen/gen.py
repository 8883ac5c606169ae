"""
Turn a frozen declaration graph into ctypes output nodes.

Type references are resolved lazily through the graph while rendering, so
self-referential records only ever name each other (``POINTER(Node)``) and
never expand recursively.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from ctbindgen.config import BANNER, PYTHON_KEYWORDS, RESERVED_NAMES
from ctbindgen.errors import GenerationError, NameCollisionError
from ctbindgen.items import (
    AliasItem,
    ConstItem,
    EnumItem,
    ExternFunction,
    ExternVariable,
    FieldItem,
    Item,
    LinkBlock,
    LinkType,
    StructItem,
)
from ctbindgen.log import Logger
from ctbindgen.types import (
    Composite,
    DeclGraph,
    Enum,
    FuncSig,
    Function,
    Global,
    IKind,
    Layout,
    TArray,
    TFloat,
    TFuncProto,
    TFuncPtr,
    TInt,
    TNamed,
    TOpaque,
    TPtr,
    TVoid,
    Typedef,
    TypeRef,
    Variable,
    describe,
)

logger = logging.getLogger(__name__)

_IMPORTS = "import ctypes\nimport ctypes.util\nimport enum\nimport warnings"

_RUNTIME = '''
def _load_library(name, kind):
    if name is None or kind == "static":
        return ctypes.CDLL(None)
    path = ctypes.util.find_library(name)
    if path is None and kind == "framework":
        path = "/System/Library/Frameworks/{0}.framework/{0}".format(name)
    return ctypes.CDLL(path or name)


class _LinkGroup:
    _library_ = None
    _kind_ = "dynamic"
    _prefix_ = ""

    @classmethod
    def _handle(cls):
        dll = cls.__dict__.get("_dll_")
        if dll is None:
            dll = _load_library(cls._library_, cls._kind_)
            cls._dll_ = dll
        return dll


class _extern:
    def __init__(self, symbol, restype, argtypes):
        self.symbol = symbol
        self.restype = restype
        self.argtypes = argtypes
        self.name = symbol

    def __set_name__(self, owner, name):
        self.name = name

    def __get__(self, obj, owner):
        fn = getattr(owner._handle(), self.symbol)
        fn.restype = self.restype
        fn.argtypes = self.argtypes
        setattr(owner, self.name, fn)
        return fn


class _global:
    def __init__(self, symbol, ctype, mutable=True):
        self.symbol = symbol
        self.ctype = ctype
        self.mutable = mutable

    def __get__(self, obj, owner):
        value = self.ctype.in_dll(owner._handle(), self.symbol)
        if self.mutable:
            return value
        return self.ctype.from_buffer_copy(value)


class _Copyable:
    __slots__ = ()

    def __copy__(self):
        return type(self).from_buffer_copy(self)

    clone = __copy__


class _Debuggable:
    __slots__ = ()

    def __repr__(self):
        body = ", ".join(
            "{}={!r}".format(f[0], getattr(self, f[0]))
            for f in self._fields_
            if f[0] != "_padding_"
        )
        return "{}({})".format(type(self).__name__, body)


_OPAQUE_UNITS = {1: ctypes.c_uint8, 2: ctypes.c_uint16, 4: ctypes.c_uint32, 8: ctypes.c_uint64}
_opaque_types = {}


def _opaque(size, align):
    """Storage with the size and alignment of a type that has no binding."""
    cls = _opaque_types.get((size, align))
    if cls is None:
        unit = _OPAQUE_UNITS.get(align) if size % align == 0 else None
        unit = unit or ctypes.c_ubyte
        cls = type(
            "_Opaque{}_{}".format(size, align),
            (ctypes.Structure,),
            {"_fields_": [("_storage", unit * (size // ctypes.sizeof(unit)))]},
        )
        _opaque_types[(size, align)] = cls
    return cls


def _check_layout(cls, size, align):
    got = (ctypes.sizeof(cls), ctypes.alignment(cls))
    if got != (size, align):
        warnings.warn(
            "{}: ctypes layout {}/{} differs from C layout {}/{}".format(
                cls.__name__, got[0], got[1], size, align
            ),
            RuntimeWarning,
        )
'''

_GROUP_MEMBERS = {"_handle", "_library_", "_kind_", "_prefix_", "_dll_"}


@dataclass
class GenOptions:
    native_enums: bool = True
    derive_copy: bool = True
    derive_debug: bool = True
    links: List[Tuple[str, LinkType]] = field(default_factory=list)
    link_prefix: str = ""
    functions: bool = True
    enums: bool = True
    globals: bool = True
    types: bool = True
    layout_checks: bool = True


def py_ident(name: str) -> str:
    if name in PYTHON_KEYWORDS:
        return name + "_"
    return name


class CodeGenerator:
    def __init__(self, options: GenOptions, graph: DeclGraph, sink: Logger) -> None:
        self.opts = options
        self.graph = graph
        self.sink = sink
        self._names: Dict[str, str] = {n: "the module runtime" for n in RESERVED_NAMES}
        self._records = {
            py_ident(g.name) for g in graph if isinstance(g, Composite) and self.emitted(g)
        }

    def generate(self) -> Tuple[List[Item], List[str]]:
        items: List[Item] = []
        functions: List[ExternFunction] = []
        variables: List[ExternVariable] = []
        try:
            for g in self.graph:
                if not self.emitted(g):
                    continue
                if isinstance(g, Composite):
                    items.append(self._struct(g))
                elif isinstance(g, Enum):
                    items.extend(self._enum(g))
                elif isinstance(g, Typedef):
                    items.append(self._alias(g))
                elif isinstance(g, Function):
                    functions.append(self._function(g))
                elif isinstance(g, Variable):
                    variables.append(self._variable(g))
            items = _ordered(items)
            self._check_members(functions, variables)
            items.extend(self._link_blocks(functions, variables))
        except GenerationError as exc:
            self.sink.error(str(exc))
            raise
        logger.info("Generated %d items", len(items))
        return items, self.attributes()

    def attributes(self) -> List[str]:
        return [BANNER, _IMPORTS, _RUNTIME.strip("\n")]

    # -- selection -------------------------------------------------------

    def emitted(self, g: Global) -> bool:
        if not g.retained:
            return False
        if isinstance(g, Composite):
            return self.opts.types
        if isinstance(g, Typedef):
            return self.opts.types and not self._names_its_target(g)
        if isinstance(g, Enum):
            return self.opts.enums
        if isinstance(g, Function):
            return self.opts.functions
        if isinstance(g, Variable):
            return self.opts.globals
        return False

    def _names_its_target(self, td: Typedef) -> bool:
        """``typedef struct Foo Foo;`` and adopted anonymous types."""
        if not isinstance(td.target, TNamed):
            return False
        g = self.graph.lookup(td.target)
        return isinstance(g, (Composite, Enum)) and g.name == td.name

    def _claim(self, name: str, owner: Union[Global, str]) -> str:
        py = py_ident(name)
        what = owner if isinstance(owner, str) else describe(owner)
        prev = self._names.get(py)
        if prev is not None:
            raise NameCollisionError(py, prev, what)
        self._names[py] = what
        return py

    # -- type expressions ------------------------------------------------

    def render(self, ty: TypeRef, deps: Optional[List[str]] = None) -> str:
        """ctypes expression for ``ty`` used by value.

        Names of emitted items that must be fully defined first are appended
        to ``deps``.
        """
        if deps is None:
            deps = []
        if isinstance(ty, TVoid):
            return "None"
        if isinstance(ty, TInt):
            return ty.kind.ctype
        if isinstance(ty, TFloat):
            return ty.kind.value
        if isinstance(ty, TOpaque):
            return _opaque(ty.layout)
        if isinstance(ty, TPtr):
            return self._pointer(ty, deps)
        if isinstance(ty, TArray):
            return f"{self.render(ty.elem, deps)} * {ty.length or 0}"
        if isinstance(ty, (TFuncPtr, TFuncProto)):
            return self._cfunctype(ty.sig, deps)

        g = self.graph.lookup(ty)
        if isinstance(g, Typedef):
            if not self.emitted(g):
                return self.render(g.target, deps)
            return _dep(deps, py_ident(g.name))
        if isinstance(g, Composite):
            if not self.emitted(g):
                return _opaque(g.layout)
            return _dep(deps, py_ident(g.name))
        if isinstance(g, Enum):
            if self.emitted(g) and not self.opts.native_enums:
                return _dep(deps, py_ident(g.name))
            return g.kind.integral_ctype
        raise GenerationError(f"{describe(g)} cannot be used as a type")

    def _look_through(self, ty: TypeRef) -> TypeRef:
        while isinstance(ty, TNamed):
            g = self.graph.lookup(ty)
            if not isinstance(g, Typedef) or self.emitted(g):
                break
            ty = g.target
        return ty

    def _pointer(self, ty: TPtr, deps: List[str]) -> str:
        canon = self.graph.canonical(ty.pointee)
        if isinstance(canon, (TVoid, TOpaque)):
            return "ctypes.c_void_p"
        if isinstance(canon, TInt) and canon.kind is IKind.CHAR:
            return "ctypes.c_char_p"
        if isinstance(canon, TInt) and canon.kind is IKind.WCHAR:
            return "ctypes.c_wchar_p"

        target = self._look_through(ty.pointee)
        if isinstance(target, TFuncProto):
            return self._cfunctype(target.sig, deps)
        if isinstance(target, TNamed):
            g = self.graph.lookup(target)
            if isinstance(g, Typedef) and isinstance(canon, TFuncProto):
                # a CFUNCTYPE is already a pointer
                return _dep(deps, py_ident(g.name))
            if isinstance(g, Composite):
                if not self.emitted(g):
                    return "ctypes.c_void_p"
                return f"ctypes.POINTER({py_ident(g.name)})"
        return f"ctypes.POINTER({self.render(target, deps)})"

    def _cfunctype(self, sig: FuncSig, deps: List[str]) -> str:
        inner: List[str] = []
        parts = [self.render(sig.ret, inner)]
        parts.extend(self.render(p.ty, inner) for p in sig.params)
        # records only need to exist, not be laid out, to appear in a prototype
        for name in inner:
            if name not in self._records:
                _dep(deps, name)
        return f"ctypes.CFUNCTYPE({', '.join(parts)})"

    def _bitfield_ctype(self, ty: TypeRef, deps: List[str]) -> str:
        canon = self.graph.canonical(ty)
        if isinstance(canon, TInt):
            return canon.kind.integral_ctype
        if isinstance(canon, TNamed):
            g = self.graph.lookup(canon)
            if isinstance(g, Enum):
                return g.kind.integral_ctype
        return self.render(ty, deps)

    # -- items -----------------------------------------------------------

    def _struct(self, g: Composite) -> StructItem:
        name = self._claim(g.name, g)
        deps: List[str] = []
        fields: List[FieldItem] = []
        anonymous: List[str] = []
        for f in g.fields:
            fname = py_ident(f.name)
            if f.bit_width is not None:
                fields.append(FieldItem(fname, self._bitfield_ctype(f.ty, deps), f.bit_width))
            else:
                fields.append(FieldItem(fname, self.render(f.ty, deps)))
            if f.anonymous:
                anonymous.append(fname)

        if g.is_packed and g.has_bitfields:
            # ctypes only packs with the MSVC bitfield rules
            self.sink.warn(f"{describe(g)}: packed bitfields will not match the C layout")

        bases: List[str] = []
        if self.opts.derive_copy:
            bases.append("_Copyable")
        if self.opts.derive_debug:
            bases.append("_Debuggable")

        return StructItem(
            name=name,
            is_union=g.is_union,
            fields=fields,
            anonymous=anonymous,
            pack=g.pack,
            min_align=g.min_align,
            padding=g.tail_padding,
            bases=bases,
            complete=g.complete,
            size=g.layout.size,
            align=g.layout.align,
            check_layout=self.opts.layout_checks and g.complete and g.layout.known,
            depends_on=[d for d in deps if d != name],
        )

    def _enum(self, g: Enum) -> List[Item]:
        ctype = g.kind.integral_ctype
        variants = [(v.name, v.value) for v in g.variants]
        reserved = [n for n, _ in variants if _enum_reserved(n)]
        if self.opts.native_enums and not reserved:
            name = self._claim(g.name, g)
            return [EnumItem(name, ctype, [(py_ident(n), v) for n, v in variants])]
        if self.opts.native_enums:
            self.sink.warn(
                f"{describe(g)}: enumerator `{reserved[0]}` is not a valid IntEnum member name, "
                "emitting constants instead"
            )

        out: List[Item] = [AliasItem(self._claim(g.name, g), ctype)]
        for n, v in variants:
            out.append(ConstItem(self._claim(n, f"enumerator `{n}` of {describe(g)}"), v))
        return out

    def _alias(self, g: Typedef) -> AliasItem:
        name = self._claim(g.name, g)
        deps: List[str] = []
        target = self.render(g.target, deps)
        if isinstance(self._look_through(g.target), TNamed) and target in self._records:
            deps = []
        return AliasItem(name, target, [d for d in deps if d != name])

    def _function(self, g: Function) -> ExternFunction:
        return ExternFunction(
            name=py_ident(g.name),
            symbol=self.opts.link_prefix + g.name,
            restype=self.render(g.sig.ret),
            argtypes=[self.render(p.ty) for p in g.sig.params],
            variadic=g.sig.variadic,
        )

    def _variable(self, g: Variable) -> ExternVariable:
        return ExternVariable(
            name=py_ident(g.name),
            symbol=self.opts.link_prefix + g.name,
            ctype=self.render(g.ty),
            mutable=g.is_mutable,
        )

    def _check_members(self, functions: List[ExternFunction], variables: List[ExternVariable]) -> None:
        seen: Dict[str, str] = {n: "the link group runtime" for n in _GROUP_MEMBERS}
        for m in functions + variables:
            what = f"{'function' if isinstance(m, ExternFunction) else 'variable'} `{m.symbol}`"
            prev = seen.get(m.name)
            if prev is not None:
                raise NameCollisionError(m.name, prev, what)
            seen[m.name] = what

    def _link_blocks(self, functions: List[ExternFunction], variables: List[ExternVariable]) -> List[LinkBlock]:
        links: List[Tuple[str, LinkType]] = []
        for link in self.opts.links:
            if link not in links:
                links.append(link)

        if not links:
            if not functions and not variables:
                return []
            name = self._claim("lib", "the host process link group")
            return [LinkBlock(name, None, LinkType.DYNAMIC, self.opts.link_prefix, functions, variables)]

        bases = [f"lib_{re.sub(r'[^0-9A-Za-z_]', '_', lib)}" for lib, _ in links]
        blocks: List[LinkBlock] = []
        for base, (lib, kind) in zip(bases, links):
            if bases.count(base) > 1:
                base = f"{base}_{kind.value}"
            name = self._claim(base, f"{kind.value} link group for `{lib}`")
            blocks.append(LinkBlock(name, lib, kind, self.opts.link_prefix, functions, variables))
        return blocks


def _opaque(layout: Layout) -> str:
    return f"_opaque({max(layout.size, 0)}, {max(layout.align, 1)})"


def _enum_reserved(name: str) -> bool:
    """Names ``enum`` keeps as private or reserved attributes instead of members."""
    if name == "mro" or name.startswith("__"):
        return True
    return len(name) > 2 and name[0] == name[-1] == "_"


def _dep(deps: List[str], name: str) -> str:
    if name not in deps:
        deps.append(name)
    return name


def _ordered(items: List[Item]) -> List[Item]:
    """Stable topological order: every item follows the items it depends on."""
    by_name: Dict[str, Item] = {}
    for it in items:
        by_name.setdefault(it.name, it)

    out: List[Item] = []
    state: Dict[int, int] = {}

    def visit(it: Item) -> None:
        mark = state.get(id(it))
        if mark == 2:
            return
        if mark == 1:
            raise GenerationError(f"circular definition through `{it.name}`")
        state[id(it)] = 1
        for dep in it.depends_on:
            other = by_name.get(dep)
            if other is not None and other is not it:
                visit(other)
        state[id(it)] = 2
        out.append(it)

    for it in items:
        visit(it)
    return out


def gen_mod(options: GenOptions, graph: DeclGraph, sink: Logger) -> Tuple[List[Item], List[str]]:
    return CodeGenerator(options, graph, sink).generate()
