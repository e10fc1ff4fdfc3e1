#!/usr/bin/env python3
"""
schema_result.py - Decoded result tree and output formats

A decode produces a ResultScope: an insertion-ordered name -> Result mapping.
Struct, array and bitfield results nest another ResultScope as their value.

Usage:
    from schema_result import to_plain, to_json, to_yaml, format_tree

    result = schema.decode(data)
    print(to_json(result.fields))
    print(to_yaml(result.fields, verbose=True))
"""

import dataclasses
import ipaddress
import json
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional

import yaml

from schema_errors import DecodeError
from schema_model import FieldKind


@dataclass
class Result:
    """One decoded field."""
    kind: FieldKind
    name: str
    offset: int
    size: int
    type_name: str
    value: Any = None
    comment: Optional[str] = None
    # Integer behind an enum, bitfield or epoch value
    raw: Optional[int] = None

    def renamed(self, name: str) -> 'Result':
        return dataclasses.replace(self, name=name)

    @property
    def is_container(self) -> bool:
        return isinstance(self.value, ResultScope)


class ResultScope(Mapping[str, Result]):
    """
    Ordered mapping of decoded fields at one nesting level.

    Keys are unique within a scope; adding a name twice is a DecodeError.
    ``parent`` is only consulted by ``resolve`` so control-block bodies can
    see the fields decoded before the block.
    """

    def __init__(self, parent: Optional['ResultScope'] = None):
        self._entries: Dict[str, Result] = OrderedDict()
        self.parent = parent

    def __getitem__(self, name: str) -> Result:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ResultScope({list(self._entries)})"

    def add(self, result: Result) -> None:
        if result.name in self._entries:
            raise DecodeError(f"duplicate field name '{result.name}'",
                              result.name, result.offset)
        self._entries[result.name] = result

    def resolve(self, name: str) -> Optional[Result]:
        """Look ``name`` up here, then in enclosing scopes."""
        scope: Optional[ResultScope] = self
        while scope is not None:
            if name in scope._entries:
                return scope._entries[name]
            scope = scope.parent
        return None

    def total_size(self) -> int:
        return sum(result.size for result in self._entries.values())


# =============================================================================
# Output formats
# =============================================================================

def plain_value(value: Any, verbose: bool = False) -> Any:
    """Convert a decoded value to JSON/YAML friendly types."""
    if isinstance(value, ResultScope):
        return to_plain(value, verbose)
    if isinstance(value, ipaddress.IPv4Address):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def to_plain(scope: ResultScope, verbose: bool = False) -> Dict[str, Any]:
    """
    Convert a result tree to nested dicts.

    With ``verbose`` each field becomes {type, offset, size, value[, comment]}.
    """
    data: Dict[str, Any] = {}
    for name, result in scope.items():
        value = plain_value(result.value, verbose)
        if not verbose:
            data[name] = value
            continue
        entry = {
            'type': result.type_name,
            'offset': result.offset,
            'size': result.size,
            'value': value,
        }
        if result.comment:
            entry['comment'] = result.comment
        data[name] = entry
    return data


def to_json(scope: ResultScope, verbose: bool = False, indent: int = 2) -> str:
    return json.dumps(to_plain(scope, verbose), indent=indent)


def to_yaml(scope: ResultScope, verbose: bool = False) -> str:
    return yaml.safe_dump(to_plain(scope, verbose), sort_keys=False,
                          default_flow_style=False, allow_unicode=True)


def format_tree(scope: ResultScope, indent: int = 0) -> str:
    """Human-readable tree: one line per field with offset, size and type."""
    lines: List[str] = []
    pad = '  ' * indent
    for name, result in scope.items():
        header = f"{pad}{name} <{result.type_name}> @{result.offset} +{result.size}"
        if result.is_container:
            lines.append(header + (f"  // {result.comment}" if result.comment else ''))
            nested = format_tree(result.value, indent + 1)
            if nested:
                lines.append(nested)
            continue
        line = f"{header}: {plain_value(result.value)!r}"
        if result.comment:
            line += f"  // {result.comment}"
        lines.append(line)
    return '\n'.join(lines)
