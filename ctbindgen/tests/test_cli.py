import io
import os
import tempfile
import unittest
from unittest import mock

from ctbindgen.cli import build_parser, main, options_from_args
from ctbindgen.config import (
    EXIT_CONFIGURATION,
    EXIT_GENERATION,
    EXIT_OK,
    EXIT_RESOLUTION,
)
from ctbindgen.errors import NameCollisionError
from ctbindgen.items import LinkType
from ctbindgen.tests.support import HeaderTestCase, requires_libclang


def parse(argv):
    args, extra = build_parser().parse_known_args(argv)
    return options_from_args(args, extra)


class TestArguments(unittest.TestCase):
    def test_defaults(self) -> None:
        options, output = parse(["foo.h"])
        self.assertEqual(options.clang_args, ["foo.h"])
        self.assertIsNone(output)
        self.assertTrue(options.rust_enums)
        self.assertTrue(options.fail_on_unknown_type)

    def test_flags(self) -> None:
        options, output = parse([
            "foo.h", "-o", "out.py", "-l", "z", "--static-link", "s", "--framework-link", "Cocoa",
            "--link-prefix", "_", "--match", "foo", "--builtins", "--allow-unknown-types",
            "--override-enum-type", "sint", "--constified-enums", "--no-functions",
            "--no-derive-debug", "--no-layout-checks", "--emit-clang-ast",
        ])
        self.assertEqual(output, "out.py")
        self.assertEqual(
            options.links,
            [("z", LinkType.DYNAMIC), ("s", LinkType.STATIC), ("Cocoa", LinkType.FRAMEWORK)],
        )
        self.assertEqual(options.link_prefix, "_")
        self.assertEqual(options.match_pat, ["foo"])
        self.assertTrue(options.builtins and options.emit_ast)
        self.assertFalse(options.fail_on_unknown_type or options.rust_enums)
        self.assertEqual(options.override_enum_ty, "sint")
        self.assertFalse(options.functions or options.derive_debug or options.layout_checks)
        self.assertTrue(options.types and options.enums and options.globals and options.derive_copy)

    def test_unknown_options_go_to_clang(self) -> None:
        options, _ = parse(["-DFOO=1", "foo.h", "-I/opt/include"])
        self.assertEqual(options.clang_args, ["-DFOO=1", "foo.h", "-I/opt/include"])

    def test_clang_argument_order_is_kept(self) -> None:
        options, output = parse(["-I", "inc", "-o", "out.py", "-D", "FOO", "x.h"])
        self.assertEqual(options.clang_args, ["-I", "inc", "-D", "FOO", "x.h"])
        self.assertEqual(output, "out.py")

        options, _ = parse(["-x", "c", "a.h", "--", "-std=c99"])
        self.assertEqual(options.clang_args, ["-x", "c", "a.h", "-std=c99"])

    def test_run_file_then_command_line(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "run.yaml")
            with open(path, "w", encoding="utf-8") as f:
                f.write("headers: [a.h]\nlink_prefix: cfg_\noutput: cfg.py\n")
            options, output = parse(["--config", path, "b.h", "--link-prefix", "cli_"])
        self.assertEqual(options.clang_args, ["a.h", "b.h"])
        self.assertEqual(options.link_prefix, "cli_")
        self.assertEqual(output, "cfg.py")

    def test_invalid_enum_type_is_rejected_by_parser(self) -> None:
        with mock.patch("sys.stderr", new_callable=io.StringIO):
            with self.assertRaises(SystemExit):
                build_parser().parse_known_args(["foo.h", "--override-enum-type", "int128"])


class TestMain(unittest.TestCase):
    def test_no_input_is_a_usage_error(self) -> None:
        with mock.patch("sys.stderr", new_callable=io.StringIO):
            with self.assertRaises(SystemExit) as ctx:
                main([])
        self.assertEqual(ctx.exception.code, 2)

    def test_unopenable_output(self) -> None:
        with tempfile.TemporaryDirectory() as d:
            out = os.path.join(d, "missing", "out.py")
            with mock.patch("ctbindgen.cli.Bindings.generate") as generate:
                self.assertEqual(main(["foo.h", "-o", out]), EXIT_CONFIGURATION)
            generate.assert_not_called()

    def test_generation_failure_exit_code(self) -> None:
        err = NameCollisionError("Point", "struct `Point`", "typedef `Point`")
        with mock.patch("ctbindgen.cli.Bindings.generate", side_effect=err):
            self.assertEqual(main(["foo.h"]), EXIT_GENERATION)


@requires_libclang
class TestMainEndToEnd(HeaderTestCase):
    def test_writes_bindings(self) -> None:
        header = self.header("api.h", "struct Point { int x; int y; };\nint area(struct Point p);\n")
        out = os.path.join(self.dir, "api.py")
        self.assertEqual(main([header, "-o", out]), EXIT_OK)
        with open(out, encoding="utf-8") as f:
            text = f.read()
        self.assertIn("class Point(", text)
        self.assertIn('area = _extern("area", ctypes.c_int, [Point])', text)

    def test_unknown_type_exit_code(self) -> None:
        header = self.header("api.h", "struct C { double _Complex z; };\n")
        out = os.path.join(self.dir, "api.py")
        self.assertEqual(main([header, "-o", out]), EXIT_RESOLUTION)
        self.assertEqual(main([header, "-o", out, "--allow-unknown-types"]), EXIT_OK)


if __name__ == "__main__":
    unittest.main()
