"""
Single walk over a libclang translation unit that builds the declaration graph.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from clang.cindex import Cursor, CursorKind, Type, TypeKind

from ctbindgen.config import BUILTIN_NAMES
from ctbindgen.errors import ResolutionError, UnknownTypeError
from ctbindgen.frontend import (
    K_UNION_DECL,
    K_PACKED_ATTR,
    T_ATTRIBUTED,
    T_ELABORATED,
    canonical_kind,
    decl_usr,
    is_definition,
    is_static,
    loc_str,
    origin_file,
    strip_type_name,
)
from ctbindgen.log import Logger
from ctbindgen.types import (
    Composite,
    DeclGraph,
    Enum,
    EnumVariant,
    Field,
    FKind,
    FuncSig,
    Function,
    Global,
    IKind,
    Layout,
    Param,
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

_INT_KINDS: Dict[TypeKind, IKind] = {
    TypeKind.BOOL: IKind.BOOL,
    TypeKind.CHAR_S: IKind.CHAR,
    TypeKind.CHAR_U: IKind.CHAR,
    TypeKind.SCHAR: IKind.SCHAR,
    TypeKind.UCHAR: IKind.UCHAR,
    TypeKind.SHORT: IKind.SHORT,
    TypeKind.USHORT: IKind.USHORT,
    TypeKind.INT: IKind.INT,
    TypeKind.UINT: IKind.UINT,
    TypeKind.LONG: IKind.LONG,
    TypeKind.ULONG: IKind.ULONG,
    TypeKind.LONGLONG: IKind.LONGLONG,
    TypeKind.ULONGLONG: IKind.ULONGLONG,
    TypeKind.WCHAR: IKind.WCHAR,
    TypeKind.CHAR16: IKind.CHAR16,
    TypeKind.CHAR32: IKind.CHAR32,
}

_FLOAT_KINDS: Dict[TypeKind, FKind] = {
    TypeKind.FLOAT: FKind.FLOAT,
    TypeKind.DOUBLE: FKind.DOUBLE,
    TypeKind.LONGDOUBLE: FKind.LONGDOUBLE,
}

_ARRAY_KINDS = (
    TypeKind.CONSTANTARRAY,
    TypeKind.INCOMPLETEARRAY,
    TypeKind.VARIABLEARRAY,
)

_RECORD_DECLS = (CursorKind.STRUCT_DECL, K_UNION_DECL)
_TAG_DECLS = (CursorKind.STRUCT_DECL, K_UNION_DECL, CursorKind.ENUM_DECL)

# C typedefs whose ctypes counterpart is better than their canonical type
_TYPEDEF_OVERRIDES: Dict[str, TypeRef] = {
    "wchar_t": TInt(IKind.WCHAR),
}


@dataclass
class ResolverOptions:
    match_pat: List[str] = field(default_factory=list)
    builtins: bool = False
    fail_on_unknown_type: bool = True
    enum_override: Optional[IKind] = None


@dataclass
class _Site:
    """Where a type is being resolved from.

    ``owner``/``member`` name anonymous types found there; ``retain`` and
    ``builtin`` are inherited by types synthesized at this site.
    """

    where: str
    owner: str = ""
    member: str = ""
    retain: bool = False
    builtin: bool = False

    def at(self, owner: str, member: str) -> "_Site":
        return _Site(self.where, owner, member, self.retain, self.builtin)


class TypeResolver:
    def __init__(self, options: ResolverOptions, sink: Logger) -> None:
        self.opts = options
        self.sink = sink
        self.graph = DeclGraph()
        self._adopted: Dict[str, str] = {}
        self._spelled: Set[str] = set()
        self._synthesized: Set[str] = set()
        self._top_anon: Dict[str, int] = {}
        self._seen: Set[str] = set()
        self._children: Dict[str, List[str]] = {}
        self._defined_at: Dict[str, str] = {}
        self._folded: Dict[str, str] = {}

    # -- entry -----------------------------------------------------------

    def resolve(self, tu_cursor: Cursor) -> DeclGraph:
        """Build and freeze the graph for every top-level declaration."""
        tops = list(tu_cursor.get_children())
        self._prepass(tops)
        try:
            for cur in tops:
                self._visit_top(cur)
            self.graph.freeze()
        except ResolutionError as exc:
            self.sink.error(str(exc))
            raise
        logger.info("Resolved %d declarations", len(self.graph))
        return self.graph

    def _prepass(self, tops: List[Cursor]) -> None:
        def collect(cur: Cursor) -> None:
            name = strip_type_name(cur.spelling)
            if name:
                self._spelled.add(name)
            if cur.kind in _RECORD_DECLS:
                for ch in cur.get_children():
                    if ch.kind in _TAG_DECLS:
                        collect(ch)

        for cur in tops:
            collect(cur)
            if cur.kind != CursorKind.TYPEDEF_DECL:
                continue
            decl = _tag_decl_of(cur.underlying_typedef_type, direct=True)
            if decl is not None and not strip_type_name(decl.spelling):
                self._adopted.setdefault(self._key(decl), cur.spelling)

    def _visit_top(self, cur: Cursor) -> None:
        kind = cur.kind
        name = strip_type_name(cur.spelling)
        if name in BUILTIN_NAMES and not self.opts.builtins:
            logger.debug("skipping builtin %s", name)
            return

        if kind in _RECORD_DECLS:
            self._record(cur, self._site(cur), top=True)
        elif kind == CursorKind.ENUM_DECL:
            self._enum(cur, self._site(cur), top=True)
        elif kind == CursorKind.TYPEDEF_DECL:
            self._typedef(cur, top=True)
        elif kind == CursorKind.FUNCTION_DECL:
            self._function(cur)
        elif kind == CursorKind.VAR_DECL:
            self._variable(cur)
        else:
            logger.debug("ignoring %s at %s", kind, loc_str(cur))

    # -- policy helpers --------------------------------------------------

    def _key(self, cur: Cursor) -> str:
        usr = decl_usr(cur)
        if usr:
            return usr
        loc = cur.location
        f = loc.file.name if loc.file else ""
        return f"{cur.kind.name}:{f}:{loc.line}:{loc.column}:{cur.spelling}"

    def _site(self, cur: Cursor, builtin: bool = False) -> _Site:
        name = strip_type_name(cur.spelling)
        where = f"{loc_str(cur)}: `{name}`" if name else loc_str(cur)
        return _Site(where, builtin=builtin)

    def _wanted(self, cur: Cursor) -> bool:
        if not self.opts.match_pat:
            return True
        origin = origin_file(cur)
        if not origin:
            return True
        return any(p in origin for p in self.opts.match_pat)

    def _should_retain(self, cur: Cursor, builtin: bool) -> bool:
        if builtin and not self.opts.builtins:
            return False
        return self._wanted(cur)

    def _retain(self, g: Global, cur: Cursor) -> None:
        if g.retained or not self._should_retain(cur, g.is_builtin):
            return
        self._mark_retained(g)

    def _mark_retained(self, g: Global) -> None:
        g.retained = True
        for key in self._children.get(g.key, []):
            child = self.graph.get(key)
            if child is not None and not child.retained:
                self._mark_retained(child)

    def _unique(self, base: str) -> str:
        name = base
        n = 1
        while name in self._spelled or name in self._synthesized:
            name = f"{base}_{n}"
            n += 1
        self._synthesized.add(name)
        return name

    def _anon_name(self, decl: Cursor, tag: str, site: _Site) -> str:
        adopted = self._adopted.get(self._key(decl))
        if adopted:
            return adopted
        if site.owner and site.member:
            return self._unique(f"{site.owner}_{site.member}")
        n = self._top_anon.get(tag, 0)
        self._top_anon[tag] = n + 1
        return self._unique(f"anon_{tag}_{n}")

    def _defined(self, decl: Cursor, key: str) -> None:
        if origin_file(decl):
            self._defined_at.setdefault(loc_str(decl), key)

    def _defined_before(self, decl: Cursor, key: str) -> Optional[Global]:
        """The global first defined at ``decl``'s location, when that is another key.

        A header included twice without guards defines its records again at
        the same spot; clang drops the name of the second definition, which
        then gets a USR of its own.
        """
        if not origin_file(decl) or not is_definition(decl):
            return None
        first = self._defined_at.get(loc_str(decl))
        if first is None or first == key:
            return None
        g = self.graph.get(first)
        spelled = strip_type_name(decl.spelling)
        if g is None or (spelled and spelled != g.name):
            return None
        return g

    def _unknown(self, t: Type, site: _Site) -> TypeRef:
        spelling = t.spelling or t.kind.name
        if self.opts.fail_on_unknown_type and not site.builtin:
            raise UnknownTypeError(site.where, spelling)
        self.sink.warn(f"{site.where}: unsupported type `{spelling}` replaced by an opaque placeholder")
        return TOpaque(spelling, _layout(t))

    # -- types -----------------------------------------------------------

    def _ty(self, t: Type, site: _Site) -> TypeRef:
        k = t.kind

        if k == T_ELABORATED:
            return self._ty(t.get_named_type(), site)

        if k == TypeKind.VOID:
            return TVoid()
        if k in _INT_KINDS:
            return TInt(_INT_KINDS[k])
        if k in _FLOAT_KINDS:
            return TFloat(_FLOAT_KINDS[k])

        if k == TypeKind.TYPEDEF:
            decl = t.get_declaration()
            if decl.kind != CursorKind.TYPEDEF_DECL:
                return self._ty(t.get_canonical(), site)
            return TNamed(self._typedef(decl).key)

        if k == TypeKind.RECORD:
            decl = t.get_declaration()
            if decl.kind not in _RECORD_DECLS:
                return self._unknown(t, site)
            return TNamed(self._record(decl, site).key)

        if k == TypeKind.ENUM:
            decl = t.get_declaration()
            if decl.kind != CursorKind.ENUM_DECL:
                return self._unknown(t, site)
            return TNamed(self._enum(decl, site).key)

        if k == TypeKind.POINTER:
            pointee = t.get_pointee()
            inner = self._ty(pointee, site)
            if isinstance(inner, TFuncProto) and pointee.kind != TypeKind.TYPEDEF:
                return TFuncPtr(inner.sig)
            return TPtr(inner, _is_const(pointee))

        if k == TypeKind.CONSTANTARRAY:
            return TArray(self._ty(t.element_type, site), t.element_count)
        if k in (TypeKind.INCOMPLETEARRAY, TypeKind.VARIABLEARRAY):
            return TArray(self._ty(t.element_type, site), None)

        if k in (TypeKind.FUNCTIONPROTO, TypeKind.FUNCTIONNOPROTO):
            return TFuncProto(self._sig(t, site))

        if k == T_ATTRIBUTED or canonical_kind(t) != k:
            return self._ty(t.get_canonical(), site)

        return self._unknown(t, site)

    def _param_ty(self, t: Type, site: _Site) -> TypeRef:
        ty = self._ty(t, site)
        if isinstance(ty, TArray):
            return TPtr(ty.elem)
        if isinstance(ty, TFuncProto):
            return TFuncPtr(ty.sig)
        if isinstance(ty, TNamed) and canonical_kind(t) in _ARRAY_KINDS:
            return TPtr(self._ty(t.get_canonical().element_type, site))
        return ty

    def _sig(self, fn_type: Type, site: _Site, args: Optional[List[Cursor]] = None) -> FuncSig:
        if fn_type.kind not in (TypeKind.FUNCTIONPROTO, TypeKind.FUNCTIONNOPROTO):
            fn_type = fn_type.get_canonical()
        ret = self._ty(fn_type.get_result(), site)
        if fn_type.kind == TypeKind.FUNCTIONNOPROTO:
            return FuncSig((), ret, True)

        arg_types = list(fn_type.argument_types())
        if args is not None and len(args) == len(arg_types):
            pairs = [(a.spelling, a.type) for a in args]
        else:
            pairs = [("", at) for at in arg_types]

        params: List[Param] = []
        for i, (pname, pty) in enumerate(pairs):
            pname = pname or f"arg{i}"
            params.append(Param(pname, self._param_ty(pty, site.at(site.owner, pname))))
        return FuncSig(tuple(params), ret, fn_type.is_function_variadic())

    # -- declarations ----------------------------------------------------

    def _record(self, cur: Cursor, site: _Site, top: bool = False) -> Composite:
        decl = cur.get_definition() or cur
        key = self._key(decl)
        key = self._folded.get(key, key)
        prev = self.graph.get(key)
        if prev is not None:
            if not isinstance(prev, Composite):
                raise ResolutionError(loc_str(cur), f"{describe(prev)} redeclared as a record")
            if not prev.complete and is_definition(decl):
                prev.complete = True
                prev.layout = _layout(decl.type)
                self._defined(decl, key)
                self._fill(prev, decl)
            if top:
                self._retain(prev, decl)
            return prev

        first = self._defined_before(decl, key)
        if isinstance(first, Composite) and self._same_record(first, decl, key):
            if top:
                self._retain(first, decl)
            return first

        spelled = strip_type_name(decl.spelling)
        builtin = spelled in BUILTIN_NAMES
        is_union = decl.kind == K_UNION_DECL
        if top:
            retained = self._should_retain(decl, builtin)
        elif not spelled:
            retained = site.retain
        else:
            retained = False

        comp = Composite(
            key=key,
            name=spelled or self._anon_name(decl, "union" if is_union else "struct", site),
            is_union=is_union,
            is_anonymous=not spelled,
            complete=is_definition(decl),
            layout=_layout(decl.type),
            origin=origin_file(decl),
            retained=retained,
            is_builtin=builtin,
        )
        self.graph.add(comp)
        if comp.complete:
            self._defined(decl, key)
            self._fill(comp, decl)
        return comp

    def _same_record(self, first: Composite, decl: Cursor, key: str) -> bool:
        """Fold ``decl`` into ``first`` when both define the same members."""
        self._folded[key] = first.key
        again = Composite(
            key=key,
            name=first.name,
            is_union=decl.kind == K_UNION_DECL,
            complete=True,
            layout=_layout(decl.type),
        )
        self._fill(again, decl)
        if first.same_shape(again) and again.layout == first.layout:
            logger.debug("%s: folded repeated definition of %s", loc_str(decl), describe(first))
            return True
        del self._folded[key]
        return False

    def _fill(self, comp: Composite, decl: Cursor) -> None:
        children = list(decl.get_children())
        site = _Site(
            f"{loc_str(decl)}: `{comp.name}`",
            retain=comp.retained,
            builtin=comp.is_builtin,
        )

        field_of: Dict[str, str] = {}
        widest = 0
        for ch in children:
            if ch.kind != CursorKind.FIELD_DECL:
                continue
            widest = max(widest, ch.type.get_align())
            if ch.spelling:
                tag = _tag_decl_of(ch.type)
                if tag is not None:
                    field_of.setdefault(self._key(tag), ch.spelling)

        fields: List[Field] = []
        members = 0
        bits = 0
        end: Optional[int] = 0
        for ch in children:
            if ch.kind in _TAG_DECLS:
                if strip_type_name(ch.spelling):
                    self._tagged(ch, self._site(ch), top=True)
                    continue
                inner_key = self._key(ch.get_definition() or ch)
                fname = field_of.get(inner_key)
                if fname is not None:
                    inner = self._tagged(ch, site.at(comp.name, fname))
                else:
                    label = f"anon_{members}"
                    members += 1
                    inner = self._tagged(ch, site.at(comp.name, label))
                    if ch.kind != CursorKind.ENUM_DECL:
                        fields.append(Field(label, TNamed(inner.key), anonymous=True))
                        end = None
                self._children.setdefault(comp.key, []).append(inner.key)
                continue

            if ch.kind != CursorKind.FIELD_DECL:
                if ch.kind == K_PACKED_ATTR:
                    comp.pack = 1
                continue

            width = ch.get_bitfield_width() if ch.is_bitfield() else None
            if not ch.spelling and width is None:
                # implicit field of an anonymous member, already recorded above
                continue
            if width == 0:
                self.sink.warn(f"{loc_str(ch)}: zero-width bitfield in `{comp.name}` skipped")
                continue

            name = ch.spelling
            if not name:
                name = f"anon_bits_{bits}"
                bits += 1
            ty = self._ty(ch.type, site.at(comp.name, name))
            fields.append(Field(name, ty, width))
            if width is not None:
                end = None
            elif comp.is_union:
                here = _field_end(ch)
                end = max(end, here) if end is not None and here is not None else None
            else:
                end = _field_end(ch)

        comp.fields = fields
        if not comp.layout.known:
            return
        if comp.pack is None and widest > comp.layout.align:
            comp.pack = comp.layout.align
        if comp.pack is None and (comp.layout.align > widest or comp.has_bitfields):
            comp.min_align = comp.layout.align
        natural = min(comp.pack, widest) if comp.pack else widest
        if end is not None and natural > 0:
            if comp.layout.size > -(-end // natural) * natural:
                comp.tail_padding = comp.layout.size - end

    def _tagged(self, cur: Cursor, site: _Site, top: bool = False) -> Global:
        if cur.kind == CursorKind.ENUM_DECL:
            return self._enum(cur, site, top)
        return self._record(cur, site, top)

    def _enum(self, cur: Cursor, site: _Site, top: bool = False) -> Enum:
        decl = cur.get_definition() or cur
        key = self._key(decl)
        key = self._folded.get(key, key)
        prev = self.graph.get(key)
        if prev is not None:
            if not isinstance(prev, Enum):
                raise ResolutionError(loc_str(cur), f"{describe(prev)} redeclared as an enum")
            if top:
                self._retain(prev, decl)
            return prev

        first = self._defined_before(decl, key)
        # clang drops enumerators it has already seen, leaving the repeat empty
        again = _variants(decl)
        if isinstance(first, Enum) and (not again or again == first.variants):
            self._folded[key] = first.key
            if top:
                self._retain(first, decl)
            return first

        spelled = strip_type_name(decl.spelling)
        builtin = spelled in BUILTIN_NAMES
        if top:
            retained = self._should_retain(decl, builtin)
        else:
            retained = site.retain if not spelled else False

        kind = self.opts.enum_override
        if kind is None:
            kind = _INT_KINDS.get(canonical_kind(decl.enum_type), IKind.INT)

        en = Enum(
            key=key,
            name=spelled or self._anon_name(decl, "enum", site),
            kind=kind,
            is_anonymous=not spelled,
            layout=_layout(decl.type),
            origin=origin_file(decl),
            retained=retained,
            is_builtin=builtin,
        )
        self.graph.add(en)
        if is_definition(decl):
            self._defined(decl, key)
        en.variants = again
        return en

    def _typedef(self, cur: Cursor, top: bool = False) -> Typedef:
        key = self._key(cur)
        name = cur.spelling
        builtin = name in BUILTIN_NAMES
        prev = self.graph.get(key)

        if prev is not None and not isinstance(prev, Typedef):
            raise ResolutionError(loc_str(cur), f"{describe(prev)} redeclared as a typedef")
        if prev is not None and not top:
            return prev

        site = self._site(cur, builtin)
        if prev is None:
            td = Typedef(
                key=key,
                name=name,
                target=TVoid(),
                origin=origin_file(cur),
                retained=top and self._should_retain(cur, builtin),
                is_builtin=builtin,
            )
            self.graph.add(td)
            if top:
                self._seen.add(key)
            td.target = self._typedef_target(cur, site)
            return td

        if key in self._seen:
            target = self._typedef_target(cur, site)
            if target != prev.target:
                raise ResolutionError(site.where, f"conflicting redeclaration of {describe(prev)}")
        self._seen.add(key)
        self._retain(prev, cur)
        return prev

    def _typedef_target(self, cur: Cursor, site: _Site) -> TypeRef:
        override = _TYPEDEF_OVERRIDES.get(cur.spelling)
        if override is not None:
            return override
        return self._ty(cur.underlying_typedef_type, site)

    def _function(self, cur: Cursor) -> None:
        if is_static(cur):
            logger.debug("skipping static function %s", cur.spelling)
            return
        key = self._key(cur)
        site = self._site(cur)
        site.owner = cur.spelling
        fn = Function(
            key=key,
            name=cur.spelling,
            sig=self._sig(cur.type, site, list(cur.get_arguments())),
            origin=origin_file(cur),
            retained=self._should_retain(cur, False),
        )
        self._declare(fn, cur, site)

    def _variable(self, cur: Cursor) -> None:
        if is_static(cur):
            logger.debug("skipping static variable %s", cur.spelling)
            return
        site = self._site(cur)
        var = Variable(
            key=self._key(cur),
            name=cur.spelling,
            ty=self._ty(cur.type, site),
            is_mutable=not _is_const_storage(cur.type),
            origin=origin_file(cur),
            retained=self._should_retain(cur, False),
        )
        self._declare(var, cur, site)

    def _declare(self, g: Global, cur: Cursor, site: _Site) -> None:
        prev = self.graph.get(g.key)
        if prev is None:
            self.graph.add(g)
            return
        if not prev.same_shape(g):
            raise ResolutionError(site.where, f"conflicting redeclaration of {describe(prev)}")
        if g.retained and not prev.retained:
            self._mark_retained(prev)


def _layout(t: Type) -> Layout:
    try:
        return Layout(t.get_size(), t.get_align())
    except Exception:
        return Layout(-1, -1)


def _field_end(ch: Cursor) -> Optional[int]:
    """Byte offset just past a member, or None when libclang cannot tell."""
    try:
        offset, size = ch.get_field_offsetof(), ch.type.get_size()
    except Exception:
        return None
    if offset < 0 or size < 0:
        return None
    return offset // 8 + size


def _variants(decl: Cursor) -> List[EnumVariant]:
    return [
        EnumVariant(ch.spelling, ch.enum_value)
        for ch in decl.get_children()
        if ch.kind == CursorKind.ENUM_CONSTANT_DECL
    ]


def _is_const(t: Type) -> bool:
    try:
        return t.is_const_qualified()
    except Exception:
        return False


def _is_const_storage(t: Type) -> bool:
    # canonical array types carry the element's const, so test every level
    t = t.get_canonical()
    while not _is_const(t):
        if t.kind not in _ARRAY_KINDS:
            return False
        t = t.element_type
    return True


def _tag_decl_of(t: Type, direct: bool = False) -> Optional[Cursor]:
    """Record/enum declaration reached through elaboration, pointers and arrays."""
    while True:
        k = t.kind
        if k == T_ELABORATED:
            t = t.get_named_type()
        elif direct:
            break
        elif k == TypeKind.POINTER:
            t = t.get_pointee()
        elif k in _ARRAY_KINDS:
            t = t.element_type
        else:
            break
    if t.kind not in (TypeKind.RECORD, TypeKind.ENUM):
        return None
    decl = t.get_declaration()
    if decl.kind not in _TAG_DECLS:
        return None
    return decl.get_definition() or decl


def resolve(cursor: Cursor, options: ResolverOptions, sink: Logger) -> DeclGraph:
    return TypeResolver(options, sink).resolve(cursor)
