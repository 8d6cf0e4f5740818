"""
Exception hierarchy for the spell state engine.

Internal components raise these; the public entry points of the facade,
reconciler and sync helpers catch them, log, and degrade to empty results.
"""

from __future__ import annotations

from typing import Any


class SpellStateError(Exception):
    """Base exception for all spell state errors.

    Attributes:
        message: Human-readable error message
        details: Optional dictionary of additional error context
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class RuleError(SpellStateError):
    """Invalid rule record or rule set name."""
    pass


class DetectionError(SpellStateError):
    """Spellcasting class detection could not complete."""
    pass


class SpellLoadError(SpellStateError):
    """A spell list or spell document could not be resolved.

    Attributes:
        class_identifier: Class whose spells were being loaded, if known
    """

    def __init__(
        self,
        message: str,
        class_identifier: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.class_identifier = class_identifier


class SpellbookError(SpellStateError):
    """A personal spellbook operation was rejected."""
    pass


class QueryParseError(SpellStateError):
    """An advanced search query could not be parsed.

    Attributes:
        query: The offending query text
        clause: The clause that failed, if any
    """

    def __init__(
        self,
        message: str,
        query: str = "",
        clause: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message, details)
        self.query = query
        self.clause = clause


class LoadoutError(SpellStateError):
    """Loadout missing or invalid."""
    pass


class HostWriteError(SpellStateError):
    """A write through the host's flag or item API failed."""
    pass
