"""Generator tests on hand-built declaration graphs (no libclang needed)."""

import unittest

from ctbindgen.errors import GenerationError, NameCollisionError
from ctbindgen.gen import GenOptions, gen_mod, py_ident
from ctbindgen.items import (
    AliasItem,
    ConstItem,
    EnumItem,
    FieldItem,
    LinkBlock,
    LinkType,
    StructItem,
)
from ctbindgen.log import RecordingLogger
from ctbindgen.types import (
    Composite,
    DeclGraph,
    Enum,
    EnumVariant,
    Field,
    FKind,
    FuncSig,
    Function,
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
    UNKNOWN_LAYOUT,
    Variable,
)

INT = TInt(IKind.INT)


def point():
    return Composite(
        key="c:@S@Point",
        name="Point",
        fields=[Field("x", INT), Field("y", INT)],
        complete=True,
        layout=Layout(8, 4),
        retained=True,
    )


def color():
    return Enum(
        key="c:@E@Color",
        name="Color",
        kind=IKind.UINT,
        variants=[EnumVariant("RED", 0), EnumVariant("GREEN", 5), EnumVariant("BLUE", 6)],
        retained=True,
    )


def func(name, params=(), ret=INT, variadic=False):
    sig = FuncSig(tuple(Param(f"arg{i}", t) for i, t in enumerate(params)), ret, variadic)
    return Function(key=f"c:@F@{name}", name=name, sig=sig, retained=True)


def graph(*globals_):
    g = DeclGraph()
    for x in globals_:
        g.add(x)
    return g.freeze()


def run(g, **opts):
    sink = RecordingLogger()
    items, attrs = gen_mod(GenOptions(**opts), g, sink)
    return items, attrs, sink


class TestRecordsAndEnums(unittest.TestCase):
    def test_point_and_color(self) -> None:
        items, attrs, sink = run(graph(point(), color()))
        self.assertEqual(len(items), 2)

        s = items[0]
        self.assertIsInstance(s, StructItem)
        self.assertEqual(s.name, "Point")
        self.assertEqual(s.fields, [FieldItem("x", "ctypes.c_int"), FieldItem("y", "ctypes.c_int")])
        self.assertEqual(s.bases, ["_Copyable", "_Debuggable"])
        self.assertEqual((s.size, s.align), (8, 4))
        self.assertTrue(s.check_layout)

        e = items[1]
        self.assertIsInstance(e, EnumItem)
        self.assertEqual(e.ctype, "ctypes.c_uint")
        self.assertEqual(e.variants, [("RED", 0), ("GREEN", 5), ("BLUE", 6)])

        self.assertTrue(attrs[0].startswith("# automatically generated"))
        self.assertEqual(sink.records, [])

    def test_constified_enums(self) -> None:
        items, _, _ = run(graph(color()), native_enums=False)
        self.assertEqual(items[0], AliasItem("Color", "ctypes.c_uint"))
        self.assertEqual(
            items[1:],
            [ConstItem("RED", 0), ConstItem("GREEN", 5), ConstItem("BLUE", 6)],
        )

    def test_enum_field_storage(self) -> None:
        s = Composite(
            key="S", name="S", fields=[Field("c", TNamed("c:@E@Color"))],
            complete=True, layout=Layout(4, 4), retained=True,
        )
        items, _, _ = run(graph(color(), s))
        self.assertEqual(items[1].fields[0].ctype, "ctypes.c_uint")

        items, _, _ = run(graph(color(), s), native_enums=False)
        struct = [it for it in items if isinstance(it, StructItem)][0]
        self.assertEqual(struct.fields[0].ctype, "Color")
        self.assertEqual(struct.depends_on, ["Color"])

    def test_derive_flags(self) -> None:
        items, _, _ = run(graph(point()), derive_copy=False, derive_debug=False, layout_checks=False)
        self.assertEqual(items[0].bases, [])
        self.assertFalse(items[0].check_layout)

    def test_incomplete_record_has_no_layout_check(self) -> None:
        opaque = Composite(key="c:@S@Handle", name="Handle", retained=True)
        items, _, _ = run(graph(opaque))
        self.assertFalse(items[0].complete)
        self.assertFalse(items[0].check_layout)

    def test_bitfields_use_integral_storage(self) -> None:
        s = Composite(
            key="B", name="B",
            fields=[
                Field("flag", TInt(IKind.BOOL), 1),
                Field("a", TInt(IKind.UINT), 3),
                Field("c", TInt(IKind.CHAR), 2),
            ],
            complete=True, layout=Layout(4, 4), retained=True,
        )
        items, _, _ = run(graph(s))
        self.assertEqual(
            items[0].fields,
            [
                FieldItem("flag", "ctypes.c_ubyte", 1),
                FieldItem("a", "ctypes.c_uint", 3),
                FieldItem("c", "ctypes.c_byte", 2),
            ],
        )

    def test_anonymous_member_and_pack(self) -> None:
        u = Composite(
            key="U", name="Outer_anon_0", is_union=True, is_anonymous=True,
            fields=[Field("i", INT), Field("f", TFloat(FKind.FLOAT))],
            complete=True, layout=Layout(4, 4), retained=True,
        )
        outer = Composite(
            key="O", name="Outer",
            fields=[Field("tag", TInt(IKind.CHAR)), Field("anon_0", TNamed("U"), anonymous=True)],
            pack=1, complete=True, layout=Layout(5, 1), retained=True,
        )
        items, _, _ = run(graph(outer, u))
        self.assertEqual([it.name for it in items], ["Outer_anon_0", "Outer"])
        self.assertEqual(items[1].anonymous, ["anon_0"])
        self.assertEqual(items[1].pack, 1)
        self.assertTrue(items[0].is_union)

    def test_enumerators_reserved_by_enum_become_constants(self) -> None:
        e = Enum(
            key="E", name="E",
            variants=[EnumVariant("__E_FIRST", 0), EnumVariant("E_NEXT", 1)],
            retained=True,
        )
        k = Enum(key="K", name="K", variants=[EnumVariant("_K_", 1)], retained=True)
        items, _, sink = run(graph(e, k, color()))
        self.assertEqual(
            items,
            [
                AliasItem("E", "ctypes.c_uint"),
                ConstItem("__E_FIRST", 0),
                ConstItem("E_NEXT", 1),
                AliasItem("K", "ctypes.c_uint"),
                ConstItem("_K_", 1),
                EnumItem("Color", "ctypes.c_uint", [("RED", 0), ("GREEN", 5), ("BLUE", 6)]),
            ],
        )
        self.assertEqual(len(sink.warnings), 2)
        self.assertIn("__E_FIRST", sink.warnings[0])

    def test_over_aligned_record(self) -> None:
        s = Composite(
            key="A", name="A", fields=[Field("c", TInt(IKind.CHAR))],
            min_align=16, tail_padding=15,
            complete=True, layout=Layout(16, 16), retained=True,
        )
        items, _, sink = run(graph(s))
        self.assertEqual((items[0].min_align, items[0].padding), (16, 15))
        self.assertEqual(sink.records, [])

    def test_packed_bitfields_warn(self) -> None:
        s = Composite(
            key="P", name="P",
            fields=[Field("a", TInt(IKind.UINT), 3), Field("b", TInt(IKind.ULONGLONG), 40)],
            pack=1, complete=True, layout=Layout(6, 1), retained=True,
        )
        items, _, sink = run(graph(s))
        self.assertEqual(items[0].pack, 1)
        self.assertEqual(len(sink.warnings), 1)
        self.assertIn("`P`", sink.warnings[0])


class TestTypeExpressions(unittest.TestCase):
    def argtypes(self, *params, **opts):
        g = graph(point(), func("f", params), *opts.pop("extra", ()))
        items, _, _ = run(g, **opts)
        block = [it for it in items if isinstance(it, LinkBlock)][0]
        return block.functions[0].argtypes

    def test_pointer_rules(self) -> None:
        self.assertEqual(
            self.argtypes(
                TPtr(TVoid()),
                TPtr(TInt(IKind.CHAR), is_const=True),
                TPtr(TInt(IKind.WCHAR)),
                TPtr(INT),
                TPtr(TNamed("c:@S@Point")),
                TPtr(TPtr(TInt(IKind.CHAR))),
            ),
            [
                "ctypes.c_void_p",
                "ctypes.c_char_p",
                "ctypes.c_wchar_p",
                "ctypes.POINTER(ctypes.c_int)",
                "ctypes.POINTER(Point)",
                "ctypes.POINTER(ctypes.c_char_p)",
            ],
        )

    def test_function_pointers(self) -> None:
        sig = FuncSig((Param("a", INT),), TVoid())
        cb = Typedef(key="cb", name="callback", target=TFuncProto(sig), retained=True)
        self.assertEqual(
            self.argtypes(TFuncPtr(sig), TPtr(TNamed("cb")), extra=[cb]),
            ["ctypes.CFUNCTYPE(None, ctypes.c_int)", "callback"],
        )

    def test_suppressed_types_degrade(self) -> None:
        self.assertEqual(
            self.argtypes(TPtr(TNamed("c:@S@Point")), TNamed("c:@S@Point"), types=False),
            ["ctypes.c_void_p", "_opaque(8, 4)"],
        )

    def test_opaque_storage_keeps_alignment(self) -> None:
        s = Composite(
            key="A", name="A",
            fields=[
                Field("z", TOpaque("_Complex double", Layout(16, 8))),
                Field("w", TOpaque("__int128", UNKNOWN_LAYOUT)),
            ],
            complete=True, layout=Layout(16, 8), retained=True,
        )
        items, _, _ = run(graph(s))
        self.assertEqual([f.ctype for f in items[0].fields], ["_opaque(16, 8)", "_opaque(0, 1)"])

    def test_unemitted_typedef_is_looked_through(self) -> None:
        td = Typedef(key="u32", name="u32", target=TInt(IKind.UINT))
        self.assertEqual(self.argtypes(TNamed("u32"), extra=[td]), ["ctypes.c_uint"])

    def test_arrays(self) -> None:
        s = Composite(
            key="A", name="A",
            fields=[Field("m", TArray(TArray(INT, 3), 2)), Field("tail", TArray(INT, None))],
            complete=True, layout=Layout(24, 4), retained=True,
        )
        items, _, _ = run(graph(s))
        self.assertEqual(
            [f.ctype for f in items[0].fields],
            ["ctypes.c_int * 3 * 2", "ctypes.c_int * 0"],
        )

    def test_keywords_are_escaped(self) -> None:
        s = Composite(
            key="K", name="K", fields=[Field("from", INT), Field("lambda", INT)],
            complete=True, layout=Layout(8, 4), retained=True,
        )
        items, _, _ = run(graph(s, func("import")))
        self.assertEqual([f.name for f in items[0].fields], ["from_", "lambda_"])
        self.assertEqual(items[1].functions[0].name, "import_")
        self.assertEqual(items[1].functions[0].symbol, "import")
        self.assertEqual(py_ident("class"), "class_")
        self.assertEqual(py_ident("klass"), "klass")


class TestOrdering(unittest.TestCase):
    def test_embedded_record_comes_first(self) -> None:
        outer = Composite(
            key="O", name="Outer", fields=[Field("i", TNamed("I"))],
            complete=True, layout=Layout(4, 4), retained=True,
        )
        inner = Composite(
            key="I", name="Inner", fields=[Field("v", INT)],
            complete=True, layout=Layout(4, 4), retained=True,
        )
        items, _, _ = run(graph(outer, inner))
        self.assertEqual([it.name for it in items], ["Inner", "Outer"])

    def test_self_reference_through_typedef(self) -> None:
        td = Typedef(key="node_t", name="node_t", target=TNamed("node"), retained=True)
        node = Composite(
            key="node", name="node",
            fields=[Field("v", INT), Field("next", TPtr(TNamed("node_t")))],
            complete=True, layout=Layout(16, 8), retained=True,
        )
        items, _, _ = run(graph(td, node))
        self.assertEqual([it.name for it in items], ["node_t", "node"])
        self.assertEqual(items[0].target, "node")
        self.assertEqual(items[1].fields[1].ctype, "ctypes.POINTER(node_t)")

    def test_alias_of_alias_follows_target(self) -> None:
        a = Typedef(key="a", name="a_t", target=TNamed("b"), retained=True)
        b = Typedef(key="b", name="b_t", target=INT, retained=True)
        items, _, _ = run(graph(a, b))
        self.assertEqual([it.name for it in items], ["b_t", "a_t"])
        self.assertEqual(items[1].target, "b_t")

    def test_same_name_typedef_is_skipped(self) -> None:
        td = Typedef(key="td", name="Point", target=TNamed("c:@S@Point"), retained=True)
        items, _, sink = run(graph(point(), td))
        self.assertEqual([it.name for it in items], ["Point"])
        self.assertEqual(sink.errors, [])

    def test_unretained_declarations_are_not_emitted(self) -> None:
        p = point()
        p.retained = False
        items, _, _ = run(graph(p, func("f", [TNamed("c:@S@Point")])))
        self.assertEqual(len(items), 1)
        self.assertEqual(items[0].functions[0].argtypes, ["_opaque(8, 4)"])


class TestNames(unittest.TestCase):
    def test_collision_raises_and_is_logged(self) -> None:
        td = Typedef(key="td", name="Point", target=INT, retained=True)
        sink = RecordingLogger()
        with self.assertRaises(NameCollisionError) as ctx:
            gen_mod(GenOptions(), graph(point(), td), sink)
        self.assertEqual(ctx.exception.name, "Point")
        self.assertEqual(len(sink.errors), 1)
        self.assertIn("Point", sink.errors[0])

    def test_enumerator_collides_with_record(self) -> None:
        e = Enum(key="E", name="E", variants=[EnumVariant("Point", 1)], retained=True)
        with self.assertRaises(NameCollisionError):
            run(graph(point(), e), native_enums=False)
        # scoped inside the IntEnum class, no clash
        run(graph(point(), e))

    def test_runtime_names_are_reserved(self) -> None:
        s = Composite(key="X", name="ctypes", complete=True, layout=Layout(0, 1), retained=True)
        with self.assertRaises(NameCollisionError):
            run(graph(s))

    def test_link_group_members_are_reserved(self) -> None:
        with self.assertRaises(GenerationError):
            run(graph(func("_handle")))

    def test_duplicate_member_names(self) -> None:
        var = Variable(key="c:@import", name="import_", ty=INT, retained=True)
        with self.assertRaises(NameCollisionError):
            run(graph(func("import"), var))


class TestLinkBlocks(unittest.TestCase):
    def test_host_process_block(self) -> None:
        var = Variable(key="c:@counter", name="counter", ty=INT, is_mutable=False, retained=True)
        items, _, _ = run(graph(func("f"), var))
        block = items[-1]
        self.assertEqual((block.name, block.library, block.kind), ("lib", None, LinkType.DYNAMIC))
        self.assertEqual(block.functions[0].symbol, "f")
        self.assertFalse(block.variables[0].mutable)

    def test_no_block_without_externs(self) -> None:
        items, _, _ = run(graph(point()))
        self.assertFalse(any(isinstance(it, LinkBlock) for it in items))

    def test_one_block_per_link_with_prefix(self) -> None:
        links = [("foo", LinkType.DYNAMIC), ("bar-2", LinkType.STATIC), ("foo", LinkType.DYNAMIC)]
        items, _, _ = run(graph(func("f")), links=links, link_prefix="_")
        blocks = [it for it in items if isinstance(it, LinkBlock)]
        self.assertEqual([b.name for b in blocks], ["lib_foo", "lib_bar_2"])
        self.assertEqual(blocks[1].kind, LinkType.STATIC)
        for b in blocks:
            self.assertEqual(b.prefix, "_")
            self.assertEqual(b.functions[0].name, "f")
            self.assertEqual(b.functions[0].symbol, "_f")

    def test_same_library_with_two_kinds(self) -> None:
        links = [("foo", LinkType.DYNAMIC), ("foo", LinkType.STATIC)]
        items, _, _ = run(graph(func("f")), links=links)
        self.assertEqual([it.name for it in items], ["lib_foo_dynamic", "lib_foo_static"])

    def test_empty_block_when_links_configured(self) -> None:
        items, _, _ = run(graph(point()), links=[("foo", LinkType.DYNAMIC)])
        self.assertEqual(items[-1].name, "lib_foo")
        self.assertEqual(items[-1].functions, [])

    def test_category_toggles(self) -> None:
        var = Variable(key="c:@v", name="v", ty=INT, retained=True)
        items, _, _ = run(graph(point(), color(), func("f"), var),
                          functions=False, globals=False, enums=False)
        self.assertEqual([it.name for it in items], ["Point"])

    def test_variadic_flag(self) -> None:
        items, _, _ = run(graph(func("printf", [TPtr(TInt(IKind.CHAR), True)], variadic=True)))
        fn = items[0].functions[0]
        self.assertTrue(fn.variadic)
        self.assertEqual(fn.argtypes, ["ctypes.c_char_p"])


if __name__ == "__main__":
    unittest.main()
