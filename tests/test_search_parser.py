"""Tests for advanced search field definitions and query parsing."""

import pytest

from spell_state.constants import BOOLEAN_VALUES
from spell_state.exceptions import QueryParseError
from spell_state.search import FieldCondition, FieldDefinitions, QueryParser, parse_range_value, serialize_query


@pytest.fixture(scope="module")
def fields() -> FieldDefinitions:
    return FieldDefinitions()


@pytest.fixture(scope="module")
def parser(fields: FieldDefinitions) -> QueryParser:
    return QueryParser(fields)


class TestFieldDefinitions:
    def test_aliases_and_field_ids(self, fields: FieldDefinitions) -> None:
        assert fields.get_field_id("lvl") == "level"
        assert fields.get_field_id(" DMG ") == "damageType"
        assert fields.get_field_id("damageType") == "damageType"
        assert fields.get_field_id("fave") == "favorited"
        assert fields.get_field_id("name") is None
        assert fields.get_field_id("color") is None

    def test_one_alias_per_field(self, fields: FieldDefinitions) -> None:
        aliases = fields.unique_field_aliases()
        assert aliases[0] == "LEVEL"
        assert "CASTTIME" in aliases
        assert "LVL" not in aliases

    def test_autocomplete_values(self, fields: FieldDefinitions) -> None:
        levels = fields.get_valid_values_for_field("level")
        assert levels[:3] == ["ALL", "0", "1"]
        schools = fields.get_valid_values_for_field("school")
        assert "EVO" in schools and "EVOCATION" in schools
        assert "HEALING" in fields.get_valid_values_for_field("damageType")
        assert "DISEASED" not in fields.get_valid_values_for_field("condition")
        assert fields.get_valid_values_for_field("requiresSave") == list(BOOLEAN_VALUES)
        assert fields.get_valid_values_for_field("range") == []

    @pytest.mark.parametrize(
        "field_id, value, valid",
        [
            ("level", "3", True),
            ("level", "10", False),
            ("school", "Evocation", True),
            ("school", "chronurgy", False),
            ("castingTime", "bonus:1", True),
            ("castingTime", "week:1", False),
            ("damageType", "fire, healing", True),
            ("damageType", "fire,sound", False),
            ("requiresSave", "yes", True),
            ("requiresSave", "maybe", False),
            ("materialComponents", "notconsumed", True),
            ("range", "*-60", True),
            ("range", "30-", True),
            ("range", "sight", True),
            ("range", "1-2-3", False),
            ("range", "far", False),
        ],
    )
    def test_validation(self, fields: FieldDefinitions, field_id: str, value: str, valid: bool) -> None:
        assert fields.validate_value(field_id, value) is valid


class TestParseRangeValue:
    @pytest.mark.parametrize(
        "value, expected",
        [
            ("30", (30, None)),
            ("30-120", (30, 120)),
            ("*-60", (None, 60)),
            ("60-*", (60, None)),
            ("60-", (60, None)),
            ("self", (None, None)),
            ("", (None, None)),
        ],
    )
    def test_bounds(self, value: str, expected: tuple) -> None:
        assert parse_range_value(value) == expected


class TestQueryParser:
    def test_conjunction(self, parser: QueryParser) -> None:
        parsed = parser.parse("LEVEL:1 AND SCHOOL:evocation")
        assert parsed.conditions == [FieldCondition("level", "1"), FieldCondition("school", "evo")]
        assert parsed.type == "conjunction"

    def test_and_is_case_insensitive(self, parser: QueryParser) -> None:
        assert parser.parse("lvl:2 and con:yes").fields() == ["level", "concentration"]

    def test_values_are_normalised(self, parser: QueryParser) -> None:
        parsed = parser.parse("DMG:Fire, Cold AND SAVE:no AND CASTING:minute:10 AND CASTTIME:Action AND RANGE:30 - 120")
        assert [condition.value for condition in parsed.conditions] == [
            "fire,cold",
            "false",
            "minute:10",
            "action:1",
            "30-120",
        ]

    def test_and_must_be_a_whole_word(self, parser: QueryParser) -> None:
        with pytest.raises(QueryParseError) as exc_info:
            parser.parse("LEVEL:1 ANDSCHOOL:evo")
        assert exc_info.value.clause == "LEVEL:1 ANDSCHOOL:evo"

    @pytest.mark.parametrize(
        "query, message",
        [
            ("", "Empty query"),
            ("LEVEL", "Clause is missing ':'"),
            ("COLOR:red", "Unknown field: COLOR"),
            ("LEVEL:", "Missing value for LEVEL"),
            ("LEVEL:10", "Invalid value for LEVEL: 10"),
            ("LEVEL:1 AND", "Empty clause"),
        ],
    )
    def test_rejections(self, parser: QueryParser, query: str, message: str) -> None:
        with pytest.raises(QueryParseError) as exc_info:
            parser.parse(query)
        assert exc_info.value.message == message

    def test_one_bad_clause_rejects_query(self, parser: QueryParser) -> None:
        assert parser.parse_query("LEVEL:1 AND COLOR:red") is None
        assert parser.parse_query("LEVEL:1") is not None

    def test_serialized_query_parses_back(self, parser: QueryParser, fields: FieldDefinitions) -> None:
        parsed = parser.parse("dmg:fire and con:yes and range:*-60")
        text = serialize_query(parsed, fields)
        assert text == "DAMAGE:fire AND CON:true AND RANGE:*-60"
        assert parser.parse(text) == parsed
