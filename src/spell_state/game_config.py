"""
Static game enumerations supplied by the host system.

The defaults ship as package data (``data/dnd5e.yaml``); a host with
homebrew schools or damage types can build its own ``GameConfig``.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

DEFAULT_CONFIG_PATH = Path(__file__).parent / "data" / "dnd5e.yaml"


class SchoolEntry(BaseModel):
    """A spell school with its localized label and long key."""
    label: str
    full_key: str | None = None


class ConditionEntry(BaseModel):
    """A condition type; pseudo conditions are never searchable."""
    label: str
    pseudo: bool = False


class GameConfig(BaseModel):
    """Spell levels, schools, damage types, conditions, activation and range types."""

    spell_levels: dict[str, str] = Field(default_factory=dict)
    spell_schools: dict[str, SchoolEntry] = Field(default_factory=dict)
    damage_types: dict[str, str] = Field(default_factory=dict)
    healing_label: str = "Healing"
    condition_types: dict[str, ConditionEntry] = Field(default_factory=dict)
    activation_types: dict[str, str] = Field(default_factory=dict)
    range_types: dict[str, str] = Field(default_factory=dict)
    saving_throw_text: str = "saving throw"

    @classmethod
    def from_yaml(cls, path: Path) -> "GameConfig":
        """Load a config table from YAML.

        Args:
            path: Path to YAML file

        Raises:
            FileNotFoundError: If the YAML file doesn't exist
            yaml.YAMLError: If the YAML is malformed
        """
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        if not data:
            raise ValueError(f"Game config file {path} is empty")
        return cls(**data)

    @classmethod
    def load_default(cls) -> "GameConfig":
        """Return the bundled D&D 5e table (parsed once per process)."""
        return _load_default()

    # ------------------------------------------------------------------ #
    # Lookups
    # ------------------------------------------------------------------ #

    def damage_types_with_healing(self) -> dict[str, str]:
        """Damage types plus the synthetic ``healing`` key."""
        return {**self.damage_types, "healing": self.healing_label}

    def searchable_conditions(self) -> dict[str, ConditionEntry]:
        return {key: entry for key, entry in self.condition_types.items() if not entry.pseudo}

    def resolve_school(self, value: str) -> str | None:
        """Fold a key, long key or label to the canonical school key."""
        lowered = value.strip().lower()
        if lowered in self.spell_schools:
            return lowered
        for key, entry in self.spell_schools.items():
            if entry.full_key and entry.full_key.lower() == lowered:
                return key
            if entry.label.lower() == lowered:
                return key
        return None


@lru_cache(maxsize=1)
def _load_default() -> GameConfig:
    return GameConfig.from_yaml(DEFAULT_CONFIG_PATH)


__all__ = ["GameConfig", "SchoolEntry", "ConditionEntry"]
