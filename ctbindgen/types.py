"""Declaration graph shared by the resolver and the generator.

Type references are frozen dataclasses so two references compare equal when
they describe the same C type. Edges between declarations are ``TNamed`` keys
into the graph, never embedded objects, which keeps self-referential and
mutually recursive declarations finite.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set, Tuple, Union

from ctbindgen.errors import ResolutionError

logger = logging.getLogger(__name__)


class IKind(enum.Enum):
    BOOL = ("ctypes.c_bool", False)
    CHAR = ("ctypes.c_char", True)
    SCHAR = ("ctypes.c_byte", True)
    UCHAR = ("ctypes.c_ubyte", False)
    SHORT = ("ctypes.c_short", True)
    USHORT = ("ctypes.c_ushort", False)
    INT = ("ctypes.c_int", True)
    UINT = ("ctypes.c_uint", False)
    LONG = ("ctypes.c_long", True)
    ULONG = ("ctypes.c_ulong", False)
    LONGLONG = ("ctypes.c_longlong", True)
    ULONGLONG = ("ctypes.c_ulonglong", False)
    WCHAR = ("ctypes.c_wchar", True)
    CHAR16 = ("ctypes.c_uint16", False)
    CHAR32 = ("ctypes.c_uint32", False)

    @property
    def ctype(self) -> str:
        return self.value[0]

    @property
    def signed(self) -> bool:
        return self.value[1]

    @property
    def integral_ctype(self) -> str:
        """ctypes integer usable as enum storage or bitfield type."""
        if self is IKind.CHAR:
            return "ctypes.c_byte"
        if self is IKind.BOOL:
            return "ctypes.c_ubyte"
        if self is IKind.WCHAR:
            return "ctypes.c_int32"
        return self.ctype


class FKind(enum.Enum):
    FLOAT = "ctypes.c_float"
    DOUBLE = "ctypes.c_double"
    LONGDOUBLE = "ctypes.c_longdouble"


@dataclass(frozen=True)
class Layout:
    size: int
    align: int

    @property
    def known(self) -> bool:
        return self.size >= 0 and self.align > 0


UNKNOWN_LAYOUT = Layout(-1, -1)


# -- type references ---------------------------------------------------------


@dataclass(frozen=True)
class TVoid:
    pass


@dataclass(frozen=True)
class TInt:
    kind: IKind


@dataclass(frozen=True)
class TFloat:
    kind: FKind


@dataclass(frozen=True)
class TPtr:
    pointee: "TypeRef"
    is_const: bool = False


@dataclass(frozen=True)
class TArray:
    elem: "TypeRef"
    length: Optional[int] = None


@dataclass(frozen=True)
class Param:
    name: str
    ty: "TypeRef"


@dataclass(frozen=True)
class FuncSig:
    params: Tuple[Param, ...]
    ret: "TypeRef"
    variadic: bool = False

    def same_types(self, other: "FuncSig") -> bool:
        """Equality that ignores parameter names."""
        return (
            self.ret == other.ret
            and self.variadic == other.variadic
            and [p.ty for p in self.params] == [p.ty for p in other.params]
        )


@dataclass(frozen=True)
class TFuncPtr:
    sig: FuncSig


@dataclass(frozen=True)
class TFuncProto:
    sig: FuncSig


@dataclass(frozen=True)
class TNamed:
    key: str


@dataclass(frozen=True)
class TOpaque:
    spelling: str
    layout: Layout = UNKNOWN_LAYOUT


TypeRef = Union[TVoid, TInt, TFloat, TPtr, TArray, TFuncPtr, TFuncProto, TNamed, TOpaque]


# -- globals -----------------------------------------------------------------


@dataclass
class Field:
    name: str
    ty: TypeRef
    bit_width: Optional[int] = None
    anonymous: bool = False


@dataclass
class EnumVariant:
    name: str
    value: int


@dataclass
class Typedef:
    key: str
    name: str
    target: TypeRef
    origin: Optional[str] = None
    retained: bool = False
    is_builtin: bool = False

    def same_shape(self, other: "Global") -> bool:
        return isinstance(other, Typedef) and self.target == other.target


@dataclass
class Composite:
    key: str
    name: str
    is_union: bool = False
    fields: List[Field] = field(default_factory=list)
    is_anonymous: bool = False
    pack: Optional[int] = None
    # alignment ctypes only reaches through ``_align_``
    min_align: Optional[int] = None
    # bytes after the last member that the members alone do not account for
    tail_padding: int = 0
    complete: bool = False
    layout: Layout = UNKNOWN_LAYOUT
    origin: Optional[str] = None
    retained: bool = False
    is_builtin: bool = False

    @property
    def is_packed(self) -> bool:
        return self.pack is not None

    @property
    def has_bitfields(self) -> bool:
        return any(f.bit_width is not None for f in self.fields)

    def same_shape(self, other: "Global") -> bool:
        if not isinstance(other, Composite) or other.is_union != self.is_union:
            return False
        if not (self.complete and other.complete):
            return True
        return [(f.name, f.ty, f.bit_width) for f in self.fields] == [
            (f.name, f.ty, f.bit_width) for f in other.fields
        ]


@dataclass
class Enum:
    key: str
    name: str
    kind: IKind = IKind.UINT
    variants: List[EnumVariant] = field(default_factory=list)
    is_anonymous: bool = False
    layout: Layout = UNKNOWN_LAYOUT
    origin: Optional[str] = None
    retained: bool = False
    is_builtin: bool = False

    def same_shape(self, other: "Global") -> bool:
        if not isinstance(other, Enum):
            return False
        if not self.variants or not other.variants:
            return True
        return [(v.name, v.value) for v in self.variants] == [
            (v.name, v.value) for v in other.variants
        ]


@dataclass
class Function:
    key: str
    name: str
    sig: FuncSig
    origin: Optional[str] = None
    retained: bool = False
    is_builtin: bool = False

    def same_shape(self, other: "Global") -> bool:
        return isinstance(other, Function) and self.sig.same_types(other.sig)


@dataclass
class Variable:
    key: str
    name: str
    ty: TypeRef
    is_mutable: bool = True
    origin: Optional[str] = None
    retained: bool = False
    is_builtin: bool = False

    def same_shape(self, other: "Global") -> bool:
        return (
            isinstance(other, Variable)
            and self.ty == other.ty
            and self.is_mutable == other.is_mutable
        )


Global = Union[Typedef, Composite, Enum, Function, Variable]


def global_kind(g: Global) -> str:
    if isinstance(g, Composite):
        return "union" if g.is_union else "struct"
    if isinstance(g, Enum):
        return "enum"
    if isinstance(g, Typedef):
        return "typedef"
    if isinstance(g, Function):
        return "function"
    if isinstance(g, Variable):
        return "variable"
    raise TypeError(f"not a declaration: {g!r}")


def describe(g: Global) -> str:
    where = f" ({g.origin})" if g.origin else ""
    return f"{global_kind(g)} `{g.name}`{where}"


# -- graph -------------------------------------------------------------------


class DeclGraph:
    """Insertion-ordered arena of globals keyed by declaration identity."""

    def __init__(self) -> None:
        self._globals: Dict[str, Global] = {}
        self._frozen = False

    def __len__(self) -> int:
        return len(self._globals)

    def __iter__(self) -> Iterator[Global]:
        return iter(list(self._globals.values()))

    def __contains__(self, key: object) -> bool:
        return key in self._globals

    @property
    def frozen(self) -> bool:
        return self._frozen

    def add(self, g: Global) -> Global:
        """Insert ``g`` unless its key is already present; return the canonical entry."""
        if self._frozen:
            raise ResolutionError(g.key, "declaration graph is frozen")
        prev = self._globals.get(g.key)
        if prev is not None:
            return prev
        self._globals[g.key] = g
        return g

    def get(self, key: str) -> Optional[Global]:
        return self._globals.get(key)

    def lookup(self, ref: TNamed) -> Global:
        g = self._globals.get(ref.key)
        if g is None:
            raise ResolutionError(ref.key, "unresolved named reference")
        return g

    def canonical(self, ty: TypeRef) -> TypeRef:
        """Look through typedefs until a non-typedef reference is reached."""
        seen: Set[str] = set()
        while isinstance(ty, TNamed):
            g = self.lookup(ty)
            if not isinstance(g, Typedef):
                return ty
            if g.key in seen:
                raise ResolutionError(g.key, f"typedef cycle through `{g.name}`")
            seen.add(g.key)
            ty = g.target
        return ty

    def freeze(self) -> "DeclGraph":
        self.check()
        self._frozen = True
        return self

    # -- invariants ------------------------------------------------------

    def check(self) -> None:
        """Verify no dangling references and no by-value embedding cycle."""
        for g in self._globals.values():
            for ty in _direct_refs(g):
                for named in _named_in(ty):
                    if named.key not in self._globals:
                        raise ResolutionError(
                            describe(g), f"dangling reference to `{named.key}`"
                        )

        state: Dict[str, int] = {}

        def visit(key: str, path: List[str]) -> None:
            mark = state.get(key)
            if mark == 2:
                return
            if mark == 1:
                cycle = path[path.index(key):] + [key]
                names = " -> ".join(self._globals[k].name for k in cycle)
                raise ResolutionError(
                    describe(self._globals[key]), f"embedding cycle {names}"
                )
            state[key] = 1
            path.append(key)
            for dep in self.value_deps(self._globals[key]):
                visit(dep, path)
            path.pop()
            state[key] = 2

        for key in self._globals:
            visit(key, [])

    def value_deps(self, g: Global) -> List[str]:
        """Keys embedded by value (layout-owning edges) in declaration order."""
        out: List[str] = []
        if isinstance(g, Composite):
            for f in g.fields:
                _value_named(f.ty, out)
        elif isinstance(g, Typedef):
            _value_named(g.target, out)
        return out


def _direct_refs(g: Global) -> List[TypeRef]:
    if isinstance(g, Composite):
        return [f.ty for f in g.fields]
    if isinstance(g, Typedef):
        return [g.target]
    if isinstance(g, Function):
        return [g.sig.ret] + [p.ty for p in g.sig.params]
    if isinstance(g, Variable):
        return [g.ty]
    return []


def _named_in(ty: TypeRef) -> Iterator[TNamed]:
    if isinstance(ty, TNamed):
        yield ty
    elif isinstance(ty, TPtr):
        yield from _named_in(ty.pointee)
    elif isinstance(ty, TArray):
        yield from _named_in(ty.elem)
    elif isinstance(ty, (TFuncPtr, TFuncProto)):
        yield from _named_in(ty.sig.ret)
        for p in ty.sig.params:
            yield from _named_in(p.ty)


def _value_named(ty: TypeRef, out: List[str]) -> None:
    if isinstance(ty, TNamed):
        if ty.key not in out:
            out.append(ty.key)
    elif isinstance(ty, TArray):
        _value_named(ty.elem, out)
