"""Tests for the search engine: fuzzy and advanced search, suggestions, recents."""

import asyncio

import pytest

from spell_state.constants import Flags
from spell_state.search import SearchEngine, Suggestion
from spell_state.search import engine as engine_module

from factories import make_actor, make_wizard, organized

pytestmark = pytest.mark.anyio


# ─── Helpers ─────────────────────────────────────────────────────────


@pytest.fixture
def actor():
    return make_actor(make_wizard())


@pytest.fixture
def engine(actor) -> SearchEngine:
    entries = organized()
    search = SearchEngine(actor, lambda: entries)
    search.initialize()
    return search


@pytest.fixture
def fast_debounce(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(engine_module, "ADVANCED_SEARCH_DEBOUNCE_MS", 1)
    monkeypatch.setattr(engine_module, "FUZZY_SEARCH_DEBOUNCE_MS", 1)


def result_names(engine: SearchEngine) -> list[str]:
    return [entry.name for entry in engine.results]


class TestPerformSearch:
    async def test_fuzzy_search(self, engine: SearchEngine, actor) -> None:
        await engine.perform_search("bolt")
        assert result_names(engine) == ["Fire Bolt", "Guiding Bolt"]
        assert engine.is_current_query_advanced() is False
        assert actor.get_flag(Flags.RECENT_SEARCHES) == ["bolt"]

    async def test_advanced_search(self, engine: SearchEngine, actor) -> None:
        await engine.perform_search("^LEVEL:0")
        assert result_names(engine) == ["Fire Bolt", "Light", "Sacred Flame"]
        assert engine.is_current_query_advanced()
        assert engine.parsed_query.fields() == ["level"]
        assert actor.get_flag(Flags.RECENT_SEARCHES) == ["^LEVEL:0"]

    async def test_rejected_advanced_query(self, engine: SearchEngine, actor) -> None:
        assert await engine.perform_search("^COLOR:red") == []
        assert engine.is_current_query_advanced() is False
        assert actor.get_flag(Flags.RECENT_SEARCHES) is None

    async def test_parse_results_are_memoised(self, engine: SearchEngine) -> None:
        await engine.perform_search("^COLOR:red")
        await engine.perform_search("^LEVEL:1")
        assert engine.query_cache == {"COLOR:red": None, "LEVEL:1": engine.parsed_query}

    async def test_execute_advanced_query_on_other_spells(self, engine: SearchEngine) -> None:
        everything = organized()
        assert engine.execute_advanced_query(everything) == everything
        await engine.perform_search("^RITUAL:true")
        assert {entry.name for entry in engine.execute_advanced_query(everything)} == {
            "Detect Magic",
            "Find Familiar",
            "Ceremony",
        }

    async def test_clear_search(self, engine: SearchEngine) -> None:
        await engine.perform_search("^LEVEL:0")
        await engine.clear_search()
        assert engine.is_current_query_advanced() is False
        assert len(engine.results) == 14


class TestRecentSearches:
    async def test_most_recent_first_without_duplicates(self, engine: SearchEngine) -> None:
        for query in ("fire", "bless", "fire"):
            await engine.add_to_recent_searches(query)
        assert engine.get_recent_searches() == ["fire", "bless"]

    async def test_capped_at_eight(self, engine: SearchEngine) -> None:
        for index in range(10):
            await engine.add_to_recent_searches(f"query {index}")
        recent = engine.get_recent_searches()
        assert len(recent) == 8
        assert recent[0] == "query 9"

    async def test_blank_is_ignored_and_removal(self, engine: SearchEngine) -> None:
        await engine.add_to_recent_searches("   ")
        assert engine.get_recent_searches() == []
        await engine.add_to_recent_searches("shield")
        await engine.remove_from_recent_searches("shield")
        assert engine.get_recent_searches() == []


class TestSuggestions:
    def test_prefix_alone_lists_fields(self, engine: SearchEngine) -> None:
        suggestions = engine.get_suggestions("^")
        assert suggestions[0] == Suggestion("field", "LEVEL", "^LEVEL:")
        assert all(suggestion.kind == "field" for suggestion in suggestions)

    def test_after_and_lists_fields(self, engine: SearchEngine) -> None:
        suggestions = engine.get_suggestions("^LEVEL:1 AND ")
        assert suggestions[0].query == "^LEVEL:1 AND LEVEL:"

    def test_field_values(self, engine: SearchEngine) -> None:
        suggestions = engine.get_suggestions("^LEVEL:")
        assert suggestions[0] == Suggestion("value", "ALL", "^LEVEL:ALL")
        assert suggestions[1].query == "^LEVEL:0"

    def test_range_hint(self, engine: SearchEngine) -> None:
        (hint,) = engine.get_suggestions("^RANGE:")
        assert hint.kind == "status"

    def test_partial_boolean(self, engine: SearchEngine) -> None:
        assert engine.get_suggestions("^CON:t") == [Suggestion("value", "TRUE", "^CON:TRUE")]

    def test_complete_query_offers_execute(self, engine: SearchEngine) -> None:
        assert engine.get_suggestions("^SCHOOL:evo") == [Suggestion("execute", "Execute query", "^SCHOOL:evo")]

    def test_invalid_query_offers_nothing(self, engine: SearchEngine) -> None:
        assert engine.get_suggestions("^SCHOOL:chronurgy") == []

    def test_fuzzy_suggestions(self, engine: SearchEngine) -> None:
        assert [s.text for s in engine.get_suggestions("magic")] == ["Magic Missile", "Detect Magic"]
        assert engine.get_suggestions("zzz") == [Suggestion("status", "No matches")]

    async def test_short_input_shows_recent(self, engine: SearchEngine) -> None:
        await engine.add_to_recent_searches("bless")
        assert engine.get_suggestions("bl") == [Suggestion("recent", "bless", "bless")]


class TestDebounce:
    async def test_latest_input_wins(self, engine: SearchEngine, fast_debounce: None) -> None:
        first = engine.set_input("fire")
        second = engine.set_input("shield")
        await second
        assert first.cancelled()
        assert result_names(engine) == ["Shield"]

    async def test_advanced_input_only_refreshes_suggestions(self, engine: SearchEngine, fast_debounce: None) -> None:
        await engine.set_input("^LEVEL:")
        assert engine.results == []
        assert engine.suggestions[0].text == "ALL"

    async def test_cleanup_cancels_pending(self, engine: SearchEngine) -> None:
        pending = engine.set_input("fireball")
        await engine.cleanup()
        assert pending.cancelled()
        assert engine.is_initialized is False
        await asyncio.sleep(0)
        assert engine.results == []
