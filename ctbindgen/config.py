"""
Configuration constants for header ingestion and ctypes emission.
"""

import keyword
from typing import Dict, FrozenSet, Set, Tuple

from ctbindgen.types import IKind

# Compiler builtin declarations pruned unless builtins are requested
BUILTIN_NAMES: FrozenSet[str] = frozenset({
    "__va_list_tag",
    "__va_list",
    "__builtin_va_list",
    "__builtin_ms_va_list",
    "__int128_t",
    "__uint128_t",
    "__NSConstantString",
    "__NSConstantString_tag",
})

# --override-enum-type names -> integer kind
ENUM_OVERRIDE_KINDS: Dict[str, IKind] = {
    "uchar": IKind.UCHAR,
    "schar": IKind.SCHAR,
    "ushort": IKind.USHORT,
    "sshort": IKind.SHORT,
    "uint": IKind.UINT,
    "sint": IKind.INT,
    "ulong": IKind.ULONG,
    "slong": IKind.LONG,
    "ulonglong": IKind.ULONGLONG,
    "slonglong": IKind.LONGLONG,
}

# libclang candidates tried after LIBCLANG_FILE / LIBCLANG_PATH
LIBCLANG_CANDIDATES: Dict[str, Tuple[str, ...]] = {
    "linux": (
        "/usr/lib/llvm-*/lib/libclang.so*",
        "/usr/lib64/libclang.so",
        "/usr/lib/libclang.so",
        "/usr/local/lib/libclang.so",
    ),
    "darwin": (
        "/opt/homebrew/opt/llvm/lib/libclang.dylib",
        "/usr/local/opt/llvm/lib/libclang.dylib",
        "/Library/Developer/CommandLineTools/usr/lib/libclang.dylib",
    ),
    "win32": (
        r"C:\Program Files\LLVM\bin\libclang.dll",
        r"C:\Program Files (x86)\LLVM\bin\libclang.dll",
    ),
}

# Compilers asked for their system include directories, in order
SEARCH_PATH_COMPILERS: Tuple[str, ...] = ("clang", "gcc", "cc")

SEARCH_LIST_START: str = "#include <...> search starts here:"
SEARCH_LIST_END: str = "End of search list."

# Names emitted by the module preamble; C declarations may not reuse them
RESERVED_NAMES: Set[str] = {
    "ctypes",
    "enum",
    "warnings",
    "_load_library",
    "_LinkGroup",
    "_extern",
    "_global",
    "_Copyable",
    "_Debuggable",
    "_check_layout",
    "_opaque",
    "_opaque_types",
    "_OPAQUE_UNITS",
}

PYTHON_KEYWORDS: FrozenSet[str] = frozenset(keyword.kwlist)

BANNER: str = "# automatically generated by ctbindgen"

# Exit codes of the command line front end
EXIT_OK: int = 0
EXIT_CONFIGURATION: int = 3
EXIT_INGESTION: int = 4
EXIT_RESOLUTION: int = 5
EXIT_GENERATION: int = 6
EXIT_SERIALIZATION: int = 7
