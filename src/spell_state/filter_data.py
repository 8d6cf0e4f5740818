"""
Searchable attribute extraction.

Filter data is computed once per spell when the organised model is built,
so the search engine and the filter panel never re-read raw documents.
"""

from __future__ import annotations

from .game_config import GameConfig
from .models import CastingTimeData, FilterData, MaterialData, RangeData, Spell

NO_SOURCE_LABEL = "No Source"
NO_SOURCE_ID = "no-source"


def requires_save(spell: Spell, game_config: GameConfig) -> bool:
    """A save activity, or the saving throw phrase in the description."""
    if spell.save:
        return True
    return game_config.saving_throw_text.lower() in spell.description.lower()


def extract_conditions(spell: Spell, game_config: GameConfig) -> list[str]:
    """Keys of non-pseudo conditions whose label appears in the description."""
    description = spell.description.lower()
    if not description:
        return []
    return [
        key
        for key, condition in game_config.condition_types.items()
        if not condition.pseudo and condition.label.lower() in description
    ]


def extract_filter_data(spell: Spell, game_config: GameConfig | None = None) -> FilterData:
    """Build the ``FilterData`` record for a spell.

    Args:
        spell: Owned or compendium spell document
        game_config: Enumerations used for condition detection; the bundled
            D&D 5e table when omitted
    """
    game_config = game_config or GameConfig.load_default()
    source = spell.source_book.strip()
    damage_types: list[str] = []
    for damage_type in spell.damage_types:
        if damage_type not in damage_types:
            damage_types.append(damage_type)
    return FilterData(
        casting_time=CastingTimeData(
            type=spell.activation.type,
            value="" if spell.activation.value is None else str(spell.activation.value),
        ),
        range=RangeData(units=spell.range.units, value=spell.range.value),
        damage_types=damage_types,
        is_ritual=spell.is_ritual,
        concentration=spell.is_concentration,
        material_components=MaterialData(
            consumed=spell.materials.consumed,
            cost=spell.materials.cost,
            value=spell.materials.value,
        ),
        requires_save=requires_save(spell, game_config),
        conditions=extract_conditions(spell, game_config),
        spell_source=source or NO_SOURCE_LABEL,
        spell_source_id=source or NO_SOURCE_ID,
    )


__all__ = ["extract_filter_data", "extract_conditions", "requires_save"]
