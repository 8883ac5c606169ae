"""YAML run files.

A run file holds the same knobs as the command line, for example::

    headers: [include/foo.h]
    clang_args: [-DFOO=1]
    match: [foo.h]
    links:
      - {name: foo, kind: dynamic}
    link_prefix: ""
    override_enum_type: uint
    emit: {functions: true, enums: true, globals: true, types: true}
    output: foo_bindings.py

Loading is strict or lenient in the same way everywhere: in strict mode any
problem raises ``ConfigValidationError``; otherwise it is logged and the
offending entry ignored.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Dict, List, Optional

import yaml

from ctbindgen.builder import BindgenOptions
from ctbindgen.errors import ConfigValidationError
from ctbindgen.items import LinkType

logger = logging.getLogger(__name__)

_BOOL_KEYS = {
    "builtins": "builtins",
    "emit_ast": "emit_ast",
    "derive_debug": "derive_debug",
    "derive_copy": "derive_copy",
    "native_enums": "rust_enums",
    "layout_checks": "layout_checks",
}
_EMIT_KEYS = ("functions", "enums", "globals", "types")
_KNOWN_KEYS = set(_BOOL_KEYS) | {
    "headers",
    "clang_args",
    "match",
    "links",
    "link_prefix",
    "allow_unknown_types",
    "override_enum_type",
    "emit",
    "output",
}


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def resolve_strict_config_validation(default: bool = False) -> bool:
    """Resolve strict validation mode from ``CTBINDGEN_STRICT_CONFIG``."""
    return _env_flag("CTBINDGEN_STRICT_CONFIG", default=default)


def _problem(msg: str, strict: bool) -> None:
    if strict:
        raise ConfigValidationError(msg)
    logger.warning("%s; ignoring it", msg)


def load_run_file(path: str, strict: bool = False) -> Dict[str, Any]:
    """Parse a run file into a mapping; ``{}`` on lenient failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            payload = yaml.safe_load(f)
    except FileNotFoundError as exc:
        msg = f"Run file not found: {path}"
        if strict:
            raise ConfigValidationError(msg) from exc
        logger.warning("%s; continuing with defaults", msg)
        return {}
    except yaml.YAMLError as exc:
        msg = f"Failed to parse run file YAML at {path}: {exc}"
        if strict:
            raise ConfigValidationError(msg) from exc
        logger.warning("%s; continuing with defaults", msg)
        return {}

    if payload is None:
        return {}
    if not isinstance(payload, dict):
        msg = f"Unexpected run file payload type: {type(payload).__name__}"
        if strict:
            raise ConfigValidationError(msg)
        logger.warning("%s; continuing with defaults", msg)
        return {}
    return payload


def _str_list(data: Dict[str, Any], key: str, strict: bool) -> List[str]:
    raw = data.get(key, [])
    if isinstance(raw, str):
        return [raw]
    if not isinstance(raw, list) or not all(isinstance(x, str) for x in raw):
        _problem(f"`{key}` must be a list of strings", strict)
        return []
    return list(raw)


def _links(data: Dict[str, Any], strict: bool) -> List[tuple]:
    out = []
    raw = data.get("links", [])
    if not isinstance(raw, list):
        _problem("`links` must be a list", strict)
        return out
    for entry in raw:
        if isinstance(entry, str):
            out.append((entry, LinkType.DYNAMIC))
            continue
        if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
            _problem(f"invalid link entry {entry!r}", strict)
            continue
        kind_name = str(entry.get("kind", "dynamic")).lower()
        try:
            kind = LinkType(kind_name)
        except ValueError:
            _problem(f"unknown link kind `{kind_name}` for `{entry['name']}`", strict)
            continue
        out.append((entry["name"], kind))
    return out


def apply_config(
    options: BindgenOptions,
    data: Dict[str, Any],
    strict: bool = False,
) -> BindgenOptions:
    """Merge a parsed run file into ``options`` (in place) and return it."""
    for key in data:
        if key not in _KNOWN_KEYS:
            _problem(f"unknown run file key `{key}`", strict)

    options.clang_args.extend(_str_list(data, "clang_args", strict))
    options.clang_args.extend(_str_list(data, "headers", strict))
    options.match_pat.extend(_str_list(data, "match", strict))
    options.links.extend(_links(data, strict))

    for key, attr in _BOOL_KEYS.items():
        if key not in data:
            continue
        if not isinstance(data[key], bool):
            _problem(f"`{key}` must be a boolean", strict)
            continue
        setattr(options, attr, data[key])

    if "allow_unknown_types" in data:
        if isinstance(data["allow_unknown_types"], bool):
            options.fail_on_unknown_type = not data["allow_unknown_types"]
        else:
            _problem("`allow_unknown_types` must be a boolean", strict)

    for key in ("link_prefix", "override_enum_type"):
        if key not in data:
            continue
        if not isinstance(data[key], str):
            _problem(f"`{key}` must be a string", strict)
            continue
        if key == "link_prefix":
            options.link_prefix = data[key]
        else:
            options.override_enum_ty = data[key]

    emit = data.get("emit", {})
    if not isinstance(emit, dict):
        _problem("`emit` must be a mapping", strict)
        emit = {}
    for key, value in emit.items():
        if key not in _EMIT_KEYS or not isinstance(value, bool):
            _problem(f"invalid emit entry `{key}: {value!r}`", strict)
            continue
        setattr(options, key, value)

    return options


def config_output(data: Dict[str, Any], strict: bool = False) -> Optional[str]:
    out = data.get("output")
    if out is None:
        return None
    if not isinstance(out, str):
        _problem("`output` must be a string", strict)
        return None
    return out
