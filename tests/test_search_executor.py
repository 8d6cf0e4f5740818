"""Tests for query execution and the manual filter panel."""

import pytest

from spell_state.models import OrganizedSpell
from spell_state.search import FilterPanel, FilterState, QueryExecutor, QueryParser, fuzzy_name_match
from spell_state.search.filters import convert_range_to_standard_unit

from factories import organized


@pytest.fixture
def entries() -> list[OrganizedSpell]:
    return organized()


def names(results: list[OrganizedSpell]) -> set[str]:
    return {entry.name for entry in results}


def run(query: str, entries: list[OrganizedSpell]) -> set[str]:
    return names(QueryExecutor().execute(QueryParser().parse(query), entries))


class TestQueryExecutor:
    @pytest.mark.parametrize(
        "query, expected",
        [
            ("LEVEL:1 AND SCHOOL:abj", {"Shield", "Ceremony"}),
            ("DAMAGE:fire", {"Fire Bolt", "Fireball"}),
            ("DAMAGE:force,healing", {"Magic Missile", "Cure Wounds"}),
            ("CON:true AND RITUAL:true", {"Detect Magic"}),
            ("RANGE:100-*", {"Fire Bolt", "Magic Missile", "Guiding Bolt", "Fireball"}),
            ("RANGE:*-10 AND LEVEL:7", {"Teleport"}),
            ("RANGE:touch", {"Light", "Cure Wounds", "Ceremony"}),
            ("CASTTIME:hour", {"Find Familiar"}),
            ("CASTTIME:reaction:1", {"Shield"}),
            ("MATERIALS:consumed", {"Find Familiar"}),
            ("CONDITION:paralyzed", {"Hold Person"}),
            ("SAVE:yes", {"Sacred Flame", "Hold Person", "Fireball"}),
            ("LEVEL:9", set()),
        ],
    )
    def test_queries(self, entries: list[OrganizedSpell], query: str, expected: set[str]) -> None:
        assert run(query, entries) == expected

    def test_favorited_and_prepared(self, entries: list[OrganizedSpell]) -> None:
        by_name = {entry.name: entry for entry in entries}
        by_name["Shield"].favorited = True
        by_name["Bless"].preparation.prepared = True
        assert run("FAV:true", entries) == {"Shield"}
        assert run("PREPARED:true", entries) == {"Bless"}
        assert len(run("FAV:no", entries)) == len(entries) - 1

    def test_no_query_returns_input(self, entries: list[OrganizedSpell]) -> None:
        assert QueryExecutor().execute(None, entries) == entries


class TestFuzzyNameMatch:
    @pytest.mark.parametrize(
        "name, query, expected",
        [
            ("Magic Missile", "", True),
            ("Magic Missile", "magic missile", True),
            ("Magic Missile", "mag", True),
            ("Magic Missile", "missile", True),
            ("Magic Missile", "missile magic", True),
            ("Magic Missile", '"missile magic"', False),
            ("Magic Missile", '"magic mis"', True),
            ("Fireball", "fire bolt", True),
            ("Shield", "xyz", False),
        ],
    )
    def test_match(self, name: str, query: str, expected: bool) -> None:
        assert fuzzy_name_match(name, query) is expected


class TestRangeConversion:
    @pytest.mark.parametrize(
        "units, value, feet",
        [("ft", 60, 60), ("mi", 1, 5280), ("spec", 30, 0), ("ft", None, 0), ("", 30, 0)],
    )
    def test_feet(self, units: str, value, feet: int) -> None:
        assert convert_range_to_standard_unit(units, value) == feet


class TestFilterPanel:
    def test_combined_filters(self, entries: list[OrganizedSpell]) -> None:
        panel = FilterPanel()
        assert names(panel.apply(FilterState(level="1", school="abj"), entries)) == {"Shield", "Ceremony"}
        assert names(panel.apply(FilterState(ritual=True), entries)) == {"Detect Magic", "Find Familiar", "Ceremony"}
        assert names(panel.apply(FilterState(damage_type="fire,radiant", requires_save="true"), entries)) == {
            "Sacred Flame",
            "Fireball",
        }
        assert names(panel.apply(FilterState(name="bolt", min_range="100"), entries)) == {"Fire Bolt", "Guiding Bolt"}

    def test_empty_state_keeps_everything(self, entries: list[OrganizedSpell]) -> None:
        assert len(FilterPanel().apply(FilterState(), entries)) == len(entries)

    def test_state_from_query(self) -> None:
        parsed = QueryParser().parse("LEVEL:1 AND RANGE:30-* AND RITUAL:false AND FAV:yes AND SCHOOL:Abjuration")
        state = FilterPanel.state_from_query(parsed)
        assert state.level == "1"
        assert (state.min_range, state.max_range) == ("30", "")
        assert state.ritual is False
        assert state.favorited is True
        assert state.school == "abj"

    def test_query_and_panel_agree(self, entries: list[OrganizedSpell]) -> None:
        parsed = QueryParser().parse("LEVEL:1 AND CON:true")
        via_query = QueryExecutor().execute(parsed, entries)
        via_panel = FilterPanel().apply(FilterPanel.state_from_query(parsed), entries)
        assert names(via_query) == names(via_panel) == {"Detect Magic", "Bless"}
