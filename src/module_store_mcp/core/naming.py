"""Hierarchical name resolution - pure functions, no I/O."""

import re
from dataclasses import dataclass
from typing import List, Optional

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
SEPARATOR = "."


@dataclass(frozen=True)
class ParsedName:
    parent: Optional[str]
    name: str


class NameResolver:
    """Builds, splits and validates dotted module names"""

    def __init__(self, max_depth: int = 5, max_name_length: int = 100):
        self.max_depth = max_depth
        self.max_name_length = max_name_length

    @staticmethod
    def generate_hierarchical_name(name: str, parent_name: Optional[str] = None) -> str:
        if not parent_name:
            return name
        return f"{parent_name}{SEPARATOR}{name}"

    @staticmethod
    def parse_hierarchical_name(hierarchical_name: str) -> ParsedName:
        parent, sep, name = hierarchical_name.rpartition(SEPARATOR)
        if not sep:
            return ParsedName(parent=None, name=hierarchical_name)
        return ParsedName(parent=parent, name=name)

    def validate_name(self, name: object) -> bool:
        return (
            isinstance(name, str)
            and 0 < len(name) <= self.max_name_length
            and IDENTIFIER_PATTERN.match(name) is not None
        )

    def validate_hierarchical_name(self, hierarchical_name: object) -> bool:
        if not isinstance(hierarchical_name, str) or not hierarchical_name:
            return False
        segments = hierarchical_name.split(SEPARATOR)
        if len(segments) > self.max_depth:
            return False
        return all(self.validate_name(segment) for segment in segments)

    def name_error(self, name: object) -> Optional[str]:
        """Human readable reason a local name is invalid, or None"""
        if not isinstance(name, str) or not name.strip():
            return "Module name must be a non-empty string"
        if len(name) > self.max_name_length:
            return f"Module name longer than {self.max_name_length} characters"
        if name[0].isdigit():
            return f"Module name must not start with a digit: {name!r}"
        if IDENTIFIER_PATTERN.match(name) is None:
            return f"Module name may only contain letters, digits and underscores: {name!r}"
        return None

    def hierarchical_name_error(self, hierarchical_name: object) -> Optional[str]:
        if not isinstance(hierarchical_name, str) or not hierarchical_name:
            return "Hierarchical name must be a non-empty string"
        segments = hierarchical_name.split(SEPARATOR)
        if len(segments) > self.max_depth:
            return (
                f"Nesting depth {len(segments)} of {hierarchical_name!r} "
                f"exceeds maximum of {self.max_depth}"
            )
        for segment in segments:
            reason = self.name_error(segment)
            if reason:
                return f"Invalid segment in {hierarchical_name!r}: {reason}"
        return None

    @staticmethod
    def depth(hierarchical_name: str) -> int:
        return len(hierarchical_name.split(SEPARATOR)) if hierarchical_name else 0

    @staticmethod
    def ancestors(hierarchical_name: str) -> List[str]:
        """Ancestor names by prefix, outermost first"""
        segments = hierarchical_name.split(SEPARATOR)
        return [SEPARATOR.join(segments[:i]) for i in range(1, len(segments))]
