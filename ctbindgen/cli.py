from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional, Tuple

from ctbindgen.builder import BindgenOptions, Bindings
from ctbindgen.config import (
    ENUM_OVERRIDE_KINDS,
    EXIT_CONFIGURATION,
    EXIT_GENERATION,
    EXIT_INGESTION,
    EXIT_OK,
    EXIT_RESOLUTION,
    EXIT_SERIALIZATION,
)
from ctbindgen.errors import (
    ConfigurationError,
    GenerationError,
    IngestionError,
    ResolutionError,
    SerializationError,
)
from ctbindgen.items import LinkType
from ctbindgen.log import StdLogger, configure_structured_logging, set_run_id
from ctbindgen.settings import (
    apply_config,
    config_output,
    load_run_file,
    resolve_strict_config_validation,
)
from ctbindgen.writer import write_bindings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="ctbindgen",
        description="Generate Python ctypes bindings from C headers.",
        usage="%(prog)s [options] header... [clang args]",
        epilog=(
            "Headers and options not listed above are passed to clang in the order given; "
            "use `--` to pass the rest verbatim."
        ),
        allow_abbrev=False,
    )
    ap.add_argument("-o", "--output", default=None, help="write bindings to this file (default stdout)")
    ap.add_argument("-l", "--link", action="append", default=[], metavar="NAME", help="link to a dynamic library (repeatable)")
    ap.add_argument("--static-link", action="append", default=[], metavar="NAME", help="link to a static library")
    ap.add_argument("--framework-link", action="append", default=[], metavar="NAME", help="link to a framework")
    ap.add_argument("--link-prefix", default=None, help="prefix applied to every linked symbol name")
    ap.add_argument("--match", action="append", default=[], metavar="NAME",
                    help="only bind declarations from files whose name contains NAME (repeatable, OR)")
    ap.add_argument("--builtins", action="store_true", help="also bind compiler builtin declarations")
    ap.add_argument("--allow-unknown-types", action="store_true",
                    help="replace unsupported types by opaque placeholders instead of failing")
    ap.add_argument("--override-enum-type", default=None, choices=sorted(ENUM_OVERRIDE_KINDS),
                    help="underlying integer type for every enum")
    ap.add_argument("--constified-enums", action="store_true", help="emit enums as integer constants")
    ap.add_argument("--no-functions", action="store_true", help="don't emit functions")
    ap.add_argument("--no-enums", action="store_true", help="don't emit enums")
    ap.add_argument("--no-globals", action="store_true", help="don't emit global variables")
    ap.add_argument("--no-types", action="store_true", help="don't emit types")
    ap.add_argument("--no-derive-debug", action="store_true", help="don't add __repr__ to records")
    ap.add_argument("--no-derive-copy", action="store_true", help="don't add copy/clone to records")
    ap.add_argument("--no-layout-checks", action="store_true", help="don't verify record layouts at import")
    ap.add_argument("--emit-clang-ast", action="store_true", help="print the clang AST to stderr (debugging)")
    ap.add_argument("--config", default=None, help="YAML run file")
    ap.add_argument("--strict-config", action="store_true", help="fail on any run file problem")
    ap.add_argument("-v", "--verbose", action="count", default=0, help="more logging (repeatable)")
    return ap


def clang_args(extra: List[str]) -> List[str]:
    """Arguments argparse left over, minus the first `--` separator."""
    if "--" in extra:
        i = extra.index("--")
        return extra[:i] + extra[i + 1:]
    return list(extra)


def options_from_args(args: argparse.Namespace, extra: List[str]) -> Tuple[BindgenOptions, Optional[str]]:
    options = BindgenOptions()
    output = None

    if args.config:
        strict = args.strict_config or resolve_strict_config_validation()
        data = load_run_file(args.config, strict=strict)
        apply_config(options, data, strict=strict)
        output = config_output(data, strict=strict)

    options.clang_args.extend(clang_args(extra))
    options.match_pat.extend(args.match)
    for name in args.link:
        options.links.append((name, LinkType.DYNAMIC))
    for name in args.static_link:
        options.links.append((name, LinkType.STATIC))
    for name in args.framework_link:
        options.links.append((name, LinkType.FRAMEWORK))

    if args.link_prefix is not None:
        options.link_prefix = args.link_prefix
    if args.override_enum_type is not None:
        options.override_enum_ty = args.override_enum_type
    if args.builtins:
        options.builtins = True
    if args.allow_unknown_types:
        options.fail_on_unknown_type = False
    if args.constified_enums:
        options.rust_enums = False
    if args.no_functions:
        options.functions = False
    if args.no_enums:
        options.enums = False
    if args.no_globals:
        options.globals = False
    if args.no_types:
        options.types = False
    if args.no_derive_debug:
        options.derive_debug = False
    if args.no_derive_copy:
        options.derive_copy = False
    if args.no_layout_checks:
        options.layout_checks = False
    if args.emit_clang_ast:
        options.emit_ast = True

    return options, args.output or output


def _log_level(verbose: int) -> int:
    if verbose >= 2:
        return logging.DEBUG
    if verbose == 1:
        return logging.INFO
    return logging.WARNING


def main(argv: Optional[List[str]] = None) -> int:
    ap = build_parser()
    args, extra = ap.parse_known_args(argv)

    configure_structured_logging(_log_level(args.verbose))
    set_run_id()

    sink = StdLogger()
    out = None
    try:
        options, output = options_from_args(args, extra)
        if not options.clang_args:
            ap.error("no input header given")

        if output:
            try:
                out = open(output, "w", encoding="utf-8")
            except OSError as exc:
                raise ConfigurationError(f"cannot open output `{output}`: {exc}") from exc

        bindings = Bindings.generate(options, sink)
        if bindings.ast_dump:
            sys.stderr.write(bindings.ast_dump)
        write_bindings(bindings.to_string(), out or sys.stdout)
    except ConfigurationError as exc:
        logger.error("%s", exc)
        return EXIT_CONFIGURATION
    except IngestionError as exc:
        logger.error("%s", exc)
        return EXIT_INGESTION
    except ResolutionError as exc:
        logger.debug("resolution failed: %s", exc)
        return EXIT_RESOLUTION
    except GenerationError as exc:
        logger.debug("generation failed: %s", exc)
        return EXIT_GENERATION
    except SerializationError as exc:
        logger.error("Unable to write bindings: %s", exc)
        return EXIT_SERIALIZATION
    finally:
        if out is not None:
            out.close()

    if output:
        logger.info("wrote %s", output)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
