"""
Module-wide settings for the spell state engine.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from .constants import EnforcementBehavior, RuleSetName

logger = logging.getLogger(__name__)

SETTINGS_FILE_ENV = "SPELL_STATE_SETTINGS_FILE"

# Environment variable -> settings field
ENV_OVERRIDES = {
    "SPELL_STATE_SEARCH_PREFIX": "advanced_search_prefix",
    "SPELL_STATE_RULE_SET": "spellcasting_rule_set",
    "SPELL_STATE_ENFORCEMENT": "default_enforcement_behavior",
}


class SpellStateSettings(BaseModel):
    """Settings shared by every actor managed by the engine."""

    # Search
    advanced_search_prefix: str = Field(
        default="^",
        min_length=1,
        max_length=1,
        description="Character that switches the search box into field syntax"
    )

    # Spell lists
    hidden_spell_lists: list[str] = Field(
        default_factory=list,
        description="Spell list identifiers never offered for discovery"
    )
    custom_spell_mappings: dict[str, str] = Field(
        default_factory=dict,
        description="Replacement list id for an original list id"
    )

    # Rules
    spellcasting_rule_set: RuleSetName = Field(
        default=RuleSetName.LEGACY,
        description="Rule set used when an actor has no override"
    )
    default_enforcement_behavior: EnforcementBehavior = Field(
        default=EnforcementBehavior.NOTIFY_GM,
        description="Limit enforcement when an actor has no override"
    )
    cantrip_scale_values: str = Field(
        default="cantrips-known, cantrips",
        description="Comma separated scale value keys holding cantrips known"
    )

    # Wizard
    spell_comparison_max: int = Field(default=3, ge=1, le=7)
    wizard_book_icon_color: str | None = Field(default=None)
    deduct_spell_learning_cost: bool = Field(default=False)
    consume_scrolls_when_learning: bool = Field(default=True)

    # Preparation housekeeping
    auto_delete_unprepared_spells: bool = Field(default=False)

    # User data
    spell_notes_max_length: int = Field(default=240, ge=10, le=1000)

    # Detail visibility per audience
    player_ui: dict[str, bool] = Field(default_factory=dict)
    gm_ui: dict[str, bool] = Field(default_factory=dict)

    @field_validator("advanced_search_prefix")
    @classmethod
    def validate_search_prefix(cls, v: str) -> str:
        """Reject prefixes that could start a normal spell name."""
        if v.isalnum() or v.isspace():
            raise ValueError("advanced_search_prefix must be a single non-alphanumeric character")
        return v

    @field_validator("spellcasting_rule_set", mode="before")
    @classmethod
    def validate_rule_set(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("default_enforcement_behavior", mode="before")
    @classmethod
    def validate_enforcement(cls, v: Any) -> Any:
        """Accept ``notifygm`` and similar case variants."""
        if isinstance(v, str):
            lowered = v.strip().lower()
            for behavior in EnforcementBehavior:
                if behavior.value.lower() == lowered:
                    return behavior
        return v

    @field_validator("wizard_book_icon_color")
    @classmethod
    def validate_color(cls, v: str | None) -> str | None:
        if v is None or v == "":
            return None
        if not v.startswith("#") or len(v) not in (4, 7):
            raise ValueError("wizard_book_icon_color must be a hex color like #aabbcc")
        return v

    @property
    def cantrip_scale_keys(self) -> list[str]:
        """Scale value keys in lookup order."""
        return [key.strip() for key in self.cantrip_scale_values.split(",") if key.strip()]


def load_settings(path: Path | str | None = None) -> SpellStateSettings:
    """Build settings from a YAML file and the environment.

    Loads ``.env`` first, then the YAML file given by ``path`` or the
    ``SPELL_STATE_SETTINGS_FILE`` variable, then applies ``SPELL_STATE_*``
    overrides.

    Args:
        path: Optional explicit settings file

    Returns:
        Validated SpellStateSettings

    Raises:
        FileNotFoundError: If an explicit path doesn't exist
        yaml.YAMLError: If the YAML is malformed
    """
    if not load_dotenv():
        logger.debug("No .env file found, using process environment only")

    data: dict[str, Any] = {}
    settings_path = path or os.getenv(SETTINGS_FILE_ENV)
    if settings_path:
        with open(settings_path, "r", encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
        if not isinstance(loaded, dict):
            raise ValueError("Settings file must contain a mapping")
        data.update(loaded)
        logger.debug(f"Loaded settings from {settings_path}")

    for env_name, field_name in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            data[field_name] = value

    return SpellStateSettings(**data)


__all__ = ["SpellStateSettings", "load_settings"]
