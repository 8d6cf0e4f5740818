"""
Search engine: fuzzy name search, advanced queries, autocomplete and
per-actor recent searches.

Typing is debounced with asyncio tasks. Each call to ``set_input``
cancels the pending task, so only the latest keystroke is processed.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Iterable

from ..constants import (
    ADVANCED_SEARCH_DEBOUNCE_MS,
    BOOLEAN_FIELDS,
    BOOLEAN_VALUES,
    FUZZY_SEARCH_DEBOUNCE_MS,
    MAX_FUZZY_SUGGESTIONS,
    MAX_RECENT_SEARCHES,
    MIN_QUERY_LENGTH_FOR_SUGGESTIONS,
    MIN_SEARCH_VALUE_LENGTH,
    Flags,
)
from ..host import Actor
from ..models import OrganizedSpell
from ..settings import SpellStateSettings
from .executor import QueryExecutor
from .fields import FieldDefinitions
from .filters import fuzzy_name_match
from .parser import AND_SPLIT, ParsedQuery, QueryParser

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Suggestion:
    """One dropdown row: ``kind`` is field, value, recent, spell, execute or status."""
    kind: str
    text: str
    query: str = ""


class SearchEngine:
    """Search state for one open spellbook."""

    def __init__(
        self,
        actor: Actor,
        spell_source: Callable[[], list[OrganizedSpell]],
        settings: SpellStateSettings | None = None,
        field_definitions: FieldDefinitions | None = None,
    ) -> None:
        self.actor = actor
        self.spell_source = spell_source
        self.settings = settings or SpellStateSettings()
        self.fields = field_definitions or FieldDefinitions()
        self.parser = QueryParser(self.fields)
        self.executor = QueryExecutor()
        self.query_cache: dict[str, ParsedQuery | None] = {}
        self.is_initialized = False
        self.is_advanced_query = False
        self.parsed_query: ParsedQuery | None = None
        self.current_query = ""
        self.results: list[OrganizedSpell] = []
        self.suggestions: list[Suggestion] = []
        self._pending: asyncio.Task | None = None

    @property
    def prefix(self) -> str:
        return self.settings.advanced_search_prefix

    def initialize(self) -> None:
        if self.is_initialized:
            return
        self.query_cache.clear()
        self.is_initialized = True

    def parse_and_cache_query(self, query: str) -> ParsedQuery | None:
        """Parse query text without the prefix, memoising failures too."""
        if query not in self.query_cache:
            self.query_cache[query] = self.parser.parse_query(query)
        return self.query_cache[query]

    def is_advanced_query_complete(self, query: str) -> bool:
        if not query.startswith(self.prefix):
            return False
        return self.parse_and_cache_query(query[len(self.prefix):]) is not None

    # ------------------------------------------------------------------ #
    # Input handling
    # ------------------------------------------------------------------ #

    def set_input(self, value: str) -> asyncio.Task:
        """Schedule processing of new input text, replacing any pending run.

        Advanced input only refreshes suggestions (150 ms); plain input also
        runs the fuzzy search (800 ms).
        """
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        advanced = value.startswith(self.prefix)
        delay = (ADVANCED_SEARCH_DEBOUNCE_MS if advanced else FUZZY_SEARCH_DEBOUNCE_MS) / 1000
        self._pending = asyncio.create_task(self._debounced(value, delay, advanced))
        return self._pending

    async def _debounced(self, value: str, delay: float, advanced: bool) -> None:
        await asyncio.sleep(delay)
        self.suggestions = self.get_suggestions(value)
        if not advanced:
            await self.perform_search(value)

    async def perform_search(self, query: str) -> list[OrganizedSpell]:
        """Run a query against the current spell list and remember it."""
        self.current_query = query
        if query.startswith(self.prefix):
            parsed = self.parse_and_cache_query(query[len(self.prefix):])
            if parsed is not None:
                self.is_advanced_query = True
                self.parsed_query = parsed
                self.results = self.executor.execute(parsed, self.spell_source())
                await self.add_to_recent_searches(query)
                return self.results
            logger.debug(f"Advanced query rejected: {query!r}")
            self.is_advanced_query = False
            self.parsed_query = None
            self.results = []
            return self.results
        self.is_advanced_query = False
        self.parsed_query = None
        self.results = [spell for spell in self.spell_source() if fuzzy_name_match(spell.name, query)]
        if query.strip():
            await self.add_to_recent_searches(query)
        return self.results

    def is_current_query_advanced(self) -> bool:
        return self.is_advanced_query and self.parsed_query is not None

    def execute_advanced_query(self, spells: Iterable[OrganizedSpell]) -> list[OrganizedSpell]:
        """Filter with the active advanced query; unchanged input when there is none."""
        if not self.is_current_query_advanced():
            return list(spells)
        return self.executor.execute(self.parsed_query, spells)

    async def clear_search(self) -> None:
        self.is_advanced_query = False
        self.parsed_query = None
        self.suggestions = []
        await self.perform_search("")

    async def cleanup(self) -> None:
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
            try:
                await self._pending
            except asyncio.CancelledError:
                pass
        self._pending = None
        self.is_initialized = False

    # ------------------------------------------------------------------ #
    # Suggestions
    # ------------------------------------------------------------------ #

    def get_suggestions(self, query: str) -> list[Suggestion]:
        if query.startswith(self.prefix):
            return self._advanced_suggestions(query)
        if len(query) < MIN_QUERY_LENGTH_FOR_SUGGESTIONS:
            return [Suggestion("recent", search, search) for search in self.get_recent_searches()]
        return self._fuzzy_suggestions(query)

    def _fuzzy_suggestions(self, query: str) -> list[Suggestion]:
        lowered = query.lower()
        matches = [spell for spell in self.spell_source() if lowered in spell.name.lower()]
        if not matches:
            return [Suggestion("status", "No matches")]
        return [Suggestion("spell", spell.name, spell.name) for spell in matches[:MAX_FUZZY_SUGGESTIONS]]

    def _is_incomplete_and_query(self, body: str) -> bool:
        return body.strip().upper().endswith(" AND") or body.upper().endswith(" AND ")

    def _last_clause(self, body: str) -> str:
        return AND_SPLIT.split(body)[-1].strip()

    def _advanced_suggestions(self, query: str) -> list[Suggestion]:
        body = query[len(self.prefix):]
        if not body.strip() or self._is_incomplete_and_query(body):
            return [Suggestion("field", alias, f"{query}{alias}:") for alias in self.fields.unique_field_aliases()]

        last = self._last_clause(body)
        if last.endswith(":"):
            field_id = self.fields.get_field_id(last[:-1])
            if field_id is not None:
                if field_id == "range":
                    return [Suggestion("status", "Type a range such as 30, 30-120, *-60 or 60-*")]
                return [
                    Suggestion("value", value, f"{query}{value}")
                    for value in self.fields.get_valid_values_for_field(field_id)
                ]

        alias, colon, value = last.partition(":")
        field_id = self.fields.get_field_id(alias) if colon else None
        if field_id is not None and value and self._is_incomplete_value(field_id, value):
            before = query[: query.rfind(":") + 1]
            return [
                Suggestion("value", candidate, f"{before}{candidate}")
                for candidate in self.fields.get_valid_values_for_field(field_id)
                if candidate.lower().startswith(value.lower())
            ]

        if self.is_advanced_query_complete(query):
            return [Suggestion("execute", "Execute query", query)]
        return []

    @staticmethod
    def _is_incomplete_value(field_id: str, value: str) -> bool:
        if field_id in BOOLEAN_FIELDS:
            upper = value.upper()
            if upper not in BOOLEAN_VALUES:
                return any(valid.startswith(upper) for valid in BOOLEAN_VALUES)
        return len(value) < MIN_SEARCH_VALUE_LENGTH

    # ------------------------------------------------------------------ #
    # Recent searches
    # ------------------------------------------------------------------ #

    def get_recent_searches(self) -> list[str]:
        recent = self.actor.get_flag(Flags.RECENT_SEARCHES) or []
        return list(recent) if isinstance(recent, list) else []

    async def add_to_recent_searches(self, query: str) -> None:
        """Move ``query`` to the front, dropping duplicates, capped at 8."""
        query = query.strip()
        if not query:
            return
        recent = [search for search in self.get_recent_searches() if search != query]
        recent.insert(0, query)
        try:
            await self.actor.set_flag(Flags.RECENT_SEARCHES, recent[:MAX_RECENT_SEARCHES])
        except Exception as e:
            logger.error(f"Failed to store recent search for {self.actor.name}: {e}")

    async def remove_from_recent_searches(self, query: str) -> None:
        recent = [search for search in self.get_recent_searches() if search != query]
        await self.actor.set_flag(Flags.RECENT_SEARCHES, recent)


__all__ = ["SearchEngine", "Suggestion"]
