"""
Unit tests for SpellStateSettings and load_settings.

Tests cover:
- Default values
- Field validation (search prefix, rule set, enforcement, icon color)
- Loading from YAML with environment overrides
- The bundled game config
"""

from pathlib import Path

import pytest
from pydantic import ValidationError

from spell_state.constants import EnforcementBehavior, RuleSetName
from spell_state.game_config import GameConfig
from spell_state.settings import ENV_OVERRIDES, SETTINGS_FILE_ENV, SpellStateSettings, load_settings


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    for name in (SETTINGS_FILE_ENV, *ENV_OVERRIDES):
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


class TestSpellStateSettingsDefaults:
    """Tests for SpellStateSettings default values."""

    def test_defaults(self) -> None:
        settings = SpellStateSettings()
        assert settings.advanced_search_prefix == "^"
        assert settings.spellcasting_rule_set == RuleSetName.LEGACY
        assert settings.default_enforcement_behavior == EnforcementBehavior.NOTIFY_GM
        assert settings.consume_scrolls_when_learning is True
        assert settings.deduct_spell_learning_cost is False

    def test_cantrip_scale_keys(self) -> None:
        """Test that scale keys are split and stripped in order."""
        settings = SpellStateSettings(cantrip_scale_values=" cantrips-known ,, cantrips ")
        assert settings.cantrip_scale_keys == ["cantrips-known", "cantrips"]


class TestSpellStateSettingsValidation:
    """Tests for SpellStateSettings field validation."""

    @pytest.mark.parametrize("prefix", ["a", "1", " ", "^^"])
    def test_invalid_search_prefix(self, prefix: str) -> None:
        with pytest.raises(ValidationError):
            SpellStateSettings(advanced_search_prefix=prefix)

    def test_rule_set_is_case_insensitive(self) -> None:
        assert SpellStateSettings(spellcasting_rule_set=" Modern ").spellcasting_rule_set == RuleSetName.MODERN

    def test_enforcement_is_case_insensitive(self) -> None:
        settings = SpellStateSettings(default_enforcement_behavior="NOTIFYGM")
        assert settings.default_enforcement_behavior == EnforcementBehavior.NOTIFY_GM

    def test_unknown_enforcement(self) -> None:
        with pytest.raises(ValidationError):
            SpellStateSettings(default_enforcement_behavior="strict")

    def test_icon_color(self) -> None:
        assert SpellStateSettings(wizard_book_icon_color="").wizard_book_icon_color is None
        assert SpellStateSettings(wizard_book_icon_color="#a1b2c3").wizard_book_icon_color == "#a1b2c3"
        with pytest.raises(ValidationError):
            SpellStateSettings(wizard_book_icon_color="blue")

    def test_notes_length_bounds(self) -> None:
        with pytest.raises(ValidationError):
            SpellStateSettings(spell_notes_max_length=5)


class TestLoadSettings:
    """Tests for loading settings from files and the environment."""

    def test_no_file(self, clean_env: pytest.MonkeyPatch) -> None:
        assert load_settings() == SpellStateSettings()

    def test_yaml_file(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text("spellcasting_rule_set: modern\nhidden_spell_lists: [artificer]\n", encoding="utf-8")
        settings = load_settings(path)
        assert settings.spellcasting_rule_set == RuleSetName.MODERN
        assert settings.hidden_spell_lists == ["artificer"]

    def test_file_from_environment(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text("auto_delete_unprepared_spells: true\n", encoding="utf-8")
        clean_env.setenv(SETTINGS_FILE_ENV, str(path))
        assert load_settings().auto_delete_unprepared_spells is True

    def test_environment_overrides_file(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text("advanced_search_prefix: '#'\nspellcasting_rule_set: modern\n", encoding="utf-8")
        clean_env.setenv("SPELL_STATE_SEARCH_PREFIX", "!")
        clean_env.setenv("SPELL_STATE_ENFORCEMENT", "enforced")
        settings = load_settings(path)
        assert settings.advanced_search_prefix == "!"
        assert settings.spellcasting_rule_set == RuleSetName.MODERN
        assert settings.default_enforcement_behavior == EnforcementBehavior.ENFORCED

    def test_non_mapping_file(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        path = tmp_path / "settings.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")
        with pytest.raises(ValueError, match="mapping"):
            load_settings(path)

    def test_missing_file(self, clean_env: pytest.MonkeyPatch, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "missing.yaml")


class TestGameConfig:
    """Tests for the bundled game enumerations."""

    def test_default_tables(self) -> None:
        config = GameConfig.load_default()
        assert config.spell_schools["evo"].label == "Evocation"
        assert config.spell_schools["evo"].full_key == "evocation"
        assert config.damage_types["fire"] == "Fire"

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        with pytest.raises(ValueError, match="empty"):
            GameConfig.from_yaml(path)
