"""
Output nodes produced by the generator and consumed by the writer.

Every ctypes expression is already rendered to text here; the writer only
arranges the nodes into a module.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union


class LinkType(enum.Enum):
    STATIC = "static"
    DYNAMIC = "dynamic"
    FRAMEWORK = "framework"


@dataclass
class FieldItem:
    name: str
    ctype: str
    bits: Optional[int] = None


@dataclass
class StructItem:
    name: str
    is_union: bool = False
    fields: List[FieldItem] = field(default_factory=list)
    anonymous: List[str] = field(default_factory=list)
    pack: Optional[int] = None
    min_align: Optional[int] = None
    padding: int = 0
    bases: List[str] = field(default_factory=list)
    complete: bool = True
    size: int = -1
    align: int = -1
    check_layout: bool = False
    depends_on: List[str] = field(default_factory=list)

    @property
    def base(self) -> str:
        return "ctypes.Union" if self.is_union else "ctypes.Structure"


@dataclass
class EnumItem:
    """Native enumeration, rendered as an ``enum.IntEnum`` subclass."""

    name: str
    ctype: str
    variants: List[Tuple[str, int]] = field(default_factory=list)
    depends_on: List[str] = field(default_factory=list)


@dataclass
class ConstItem:
    name: str
    value: int
    depends_on: List[str] = field(default_factory=list)


@dataclass
class AliasItem:
    name: str
    target: str
    depends_on: List[str] = field(default_factory=list)


@dataclass
class ExternFunction:
    name: str
    symbol: str
    restype: str
    argtypes: List[str] = field(default_factory=list)
    variadic: bool = False


@dataclass
class ExternVariable:
    name: str
    symbol: str
    ctype: str
    mutable: bool = True


@dataclass
class LinkBlock:
    name: str
    library: Optional[str]
    kind: LinkType
    prefix: str = ""
    functions: List[ExternFunction] = field(default_factory=list)
    variables: List[ExternVariable] = field(default_factory=list)
    depends_on: List[str] = field(default_factory=list)


Item = Union[StructItem, EnumItem, ConstItem, AliasItem, LinkBlock]
