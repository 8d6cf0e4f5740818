"""
Pydantic records for the spell state engine.

Host items (classes, spells, scrolls), the effective rule record, the
organised tab model, and the records persisted in actor flags. Records
stored in flags use camelCase aliases so the persisted shape matches what
the host's sheet integrations read.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from shortuuid import random

from .constants import (
    MAX_PREPARATION_BONUS,
    MODULE_ID,
    WIZARD_SPELLS_PER_LEVEL,
    WIZARD_STARTING_SPELLS,
    PreparationContext,
    PreparationMode,
    RitualCastingMode,
    SwapMode,
)


class CamelModel(BaseModel):
    """Base for records persisted in actor flags."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_flag(self) -> dict[str, Any]:
        """Serialize for the host's flag store."""
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Host items
# ---------------------------------------------------------------------------


class Activation(BaseModel):
    """Casting time: activation type and amount."""
    type: str = ""
    value: int | None = None


class SpellRange(BaseModel):
    """Range value and units key (ft, mi, self, touch, spec...)."""
    value: int | None = None
    units: str = ""


class Materials(BaseModel):
    """Material component details."""
    value: str = ""
    consumed: bool = False
    cost: int = 0


class Spell(BaseModel):
    """A spell document, either in a compendium or owned by an actor."""

    id: str = Field(default_factory=lambda: random(length=16))
    uuid: str = ""
    name: str
    type: Literal["spell"] = "spell"
    img: str = ""
    level: int = Field(default=0, ge=0, le=9)
    school: str = ""
    method: str = PreparationMode.SPELL.value
    prepared: int = Field(default=0, ge=0, le=2, description="0 unprepared, 1 prepared, 2 always")
    source_class: str | None = None
    compendium_source: str | None = None
    source_id: str | None = Field(default=None, description="Legacy source reference flag")
    cached_for: str | None = Field(default=None, description="Item that grants this spell")
    advancement_origin: str | None = None
    properties: set[str] = Field(default_factory=set)
    activation: Activation = Field(default_factory=Activation)
    range: SpellRange = Field(default_factory=SpellRange)
    damage_types: list[str] = Field(default_factory=list)
    save: bool = False
    description: str = ""
    materials: Materials = Field(default_factory=Materials)
    source_book: str = ""
    flags: dict[str, Any] = Field(default_factory=dict)

    @model_validator(mode="after")
    def default_uuid(self) -> "Spell":
        if not self.uuid:
            self.uuid = f"Item.{self.id}"
        return self

    @property
    def is_ritual(self) -> bool:
        return "ritual" in self.properties

    @property
    def is_concentration(self) -> bool:
        return "concentration" in self.properties

    @property
    def is_module_ritual(self) -> bool:
        """True for ritual copies created and owned by the ritual reconciler."""
        return bool(self.flags.get(MODULE_ID, {}).get("isModuleRitual"))

    @property
    def is_granted(self) -> bool:
        return bool(self.cached_for)


class SpellcastingConfig(BaseModel):
    """Spellcasting block of a class or subclass item."""
    progression: str = "none"
    type: str = "leveled"
    ability: str | None = None
    preparation_max: int = Field(default=0, ge=0)

    @property
    def has_progression(self) -> bool:
        return bool(self.progression) and self.progression != "none"


class ClassItem(BaseModel):
    """A class or subclass item on an actor."""

    id: str = Field(default_factory=lambda: random(length=16))
    name: str
    type: Literal["class", "subclass"] = "class"
    identifier: str = ""
    levels: int = Field(default=1, ge=0, le=20)
    img: str = ""
    spellcasting: SpellcastingConfig = Field(default_factory=SpellcastingConfig)
    subclass: ClassItem | None = None
    scale_values: dict[str, Any] = Field(default_factory=dict)
    compendium_source: str | None = None

    @property
    def class_identifier(self) -> str:
        """Lowercased identifier, falling back to the name."""
        return (self.identifier or self.name).strip().lower()


class ScrollItem(BaseModel):
    """A consumable spell scroll."""
    id: str = Field(default_factory=lambda: random(length=16))
    name: str
    type: Literal["consumable"] = "consumable"
    consumable_type: str = "scroll"
    spell_uuid: str | None = None


class GenericItem(BaseModel):
    """Any other item (feat, equipment...) that may grant spells."""
    id: str = Field(default_factory=lambda: random(length=16))
    name: str
    type: str = "feat"


HostItem = ClassItem | Spell | ScrollItem | GenericItem


class FavoriteEntry(BaseModel):
    """One entry in the actor's native favorites list."""
    type: str = "item"
    id: str
    sort: int = 0


class SpellList(BaseModel):
    """A spell list page: a named set of spell identities."""
    uuid: str
    name: str
    identifier: str = ""
    type: Literal["class", "subclass", "other"] = "class"
    spells: set[str] = Field(default_factory=set)
    pack: str = ""
    is_custom: bool = False

    @property
    def spell_count(self) -> int:
        return len(self.spells)


# ---------------------------------------------------------------------------
# Detection and rules
# ---------------------------------------------------------------------------


class SpellcastingClass(BaseModel):
    """A class whose effective progression grants spellcasting."""
    id: str
    name: str
    identifier: str
    img: str = ""
    levels: int = 1
    config: SpellcastingConfig
    class_item: ClassItem
    source_item: ClassItem

    @property
    def source_is_subclass(self) -> bool:
        return self.source_item.type == "subclass"


class ClassRules(CamelModel):
    """Effective rule record for one class."""

    show_cantrips: bool = True
    force_wizard_mode: bool = False
    cantrip_swapping: SwapMode = SwapMode.NONE
    spell_swapping: SwapMode = SwapMode.NONE
    ritual_casting: RitualCastingMode = RitualCastingMode.NONE
    custom_spell_list: list[str] = Field(default_factory=list)
    spell_preparation_bonus: int = Field(default=0, le=MAX_PREPARATION_BONUS)
    cantrip_preparation_bonus: int = Field(default=0, le=MAX_PREPARATION_BONUS)
    spell_learning_cost_multiplier: int = Field(default=50, ge=0)
    spell_learning_time_multiplier: int = Field(default=120, ge=0)
    starting_spells: int = Field(default=WIZARD_STARTING_SPELLS, ge=0)
    spells_per_level: int = Field(default=WIZARD_SPELLS_PER_LEVEL, ge=0)

    @field_validator("custom_spell_list", mode="before")
    @classmethod
    def coerce_spell_list(cls, v: Any) -> list[str]:
        """Older records hold a single list id or null."""
        if v is None or v == "":
            return []
        if isinstance(v, str):
            return [v]
        return [item for item in v if isinstance(item, str) and item]

    @field_validator("spell_preparation_bonus", "cantrip_preparation_bonus", mode="before")
    @classmethod
    def cap_bonus(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and v > MAX_PREPARATION_BONUS:
            return MAX_PREPARATION_BONUS
        return v


# ---------------------------------------------------------------------------
# Organised model
# ---------------------------------------------------------------------------


class SourceItemRef(BaseModel):
    """Item responsible for a special-mode spell."""
    name: str
    type: str
    id: str | None = None


class SpellPreparationStatus(BaseModel):
    """Preparation status shown next to a spell."""
    prepared: bool = False
    is_owned: bool = False
    preparation_mode: str | None = None
    disabled: bool = False
    always_prepared: bool = False
    source_item: SourceItemRef | None = None
    is_granted: bool = False
    is_cantrip_locked: bool = False
    cantrip_lock_reason: str = ""
    disabled_reason: str = ""
    prepared_by_other_class: str | None = None


class CastingTimeData(BaseModel):
    type: str = ""
    value: str = ""


class RangeData(BaseModel):
    units: str = ""
    value: int | None = None


class MaterialData(BaseModel):
    consumed: bool = False
    cost: int = 0
    value: str = ""


class FilterData(BaseModel):
    """Searchable attributes extracted once per spell."""
    casting_time: CastingTimeData = Field(default_factory=CastingTimeData)
    range: RangeData = Field(default_factory=RangeData)
    damage_types: list[str] = Field(default_factory=list)
    is_ritual: bool = False
    concentration: bool = False
    material_components: MaterialData = Field(default_factory=MaterialData)
    requires_save: bool = False
    conditions: list[str] = Field(default_factory=list)
    favorited: bool = False
    spell_source: str = ""
    spell_source_id: str = ""


class OrganizedSpell(BaseModel):
    """A spell enriched for display in a class tab."""

    uuid: str = Field(description="Canonical identity")
    id: str
    name: str
    level: int
    school: str = ""
    spell: Spell
    source_class: str | None = None
    preparation_context: PreparationContext = PreparationContext.PREPARABLE
    filter_data: FilterData = Field(default_factory=FilterData)
    preparation: SpellPreparationStatus = Field(default_factory=SpellPreparationStatus)
    can_cast_as_ritual: bool = False

    # User data overlay
    favorited: bool = False
    notes: str = ""
    has_notes: bool = False
    usage_count: int = 0
    last_used: int | None = None

    # Wizard spellbook tab
    in_wizard_spellbook: bool = False
    can_add_to_spellbook: bool = False
    learning_source: str | None = None
    learned_from_scroll: bool = False
    scroll_metadata: dict[str, Any] | None = None
    is_at_max_spells: bool = False
    show_compare_link: bool = False

    # Scroll level entries
    is_from_scroll: bool = False
    can_learn_from_scroll: bool = False
    scroll_id: str | None = None
    scroll_name: str | None = None

    @property
    def prepared(self) -> bool:
        return self.preparation.prepared


class SpellLevel(BaseModel):
    """Spells of one level (or the synthetic scroll level), sorted by name."""
    level: int | str
    name: str
    spells: list[OrganizedSpell] = Field(default_factory=list)


class PreparationStats(BaseModel):
    current: int = 0
    maximum: int = 0


class TabEntry(BaseModel):
    """Data behind one rendered tab."""
    spell_levels: list[SpellLevel] = Field(default_factory=list)
    spell_preparation: PreparationStats = Field(default_factory=PreparationStats)
    wizard_total_spellbook_count: int | None = None
    wizard_free_spellbook_count: int | None = None
    wizard_remaining_free_spells: int | None = None
    wizard_has_free_spells: bool | None = None
    wizard_max_spellbook_count: int | None = None
    wizard_is_at_max: bool | None = None


class ClassSpellData(BaseModel):
    """Per-class spell data held by the facade."""
    identifier: str
    class_name: str
    class_item: ClassItem | None = None
    spell_levels: list[SpellLevel] = Field(default_factory=list)
    spell_preparation: PreparationStats = Field(default_factory=PreparationStats)
    tab_data: dict[str, TabEntry] | None = None


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


class WizardCopyRecord(CamelModel):
    """One spellbook addition, free or paid."""
    spell_uuid: str
    date_copied: int = 0
    cost: int = Field(default=0, ge=0)
    time_spent: int = Field(default=0, ge=0)
    from_scroll: bool = False


class Loadout(CamelModel):
    """A named set of prepared spells for one class (or any class)."""
    id: str = Field(default_factory=lambda: random(length=16))
    name: str = Field(min_length=1)
    description: str = ""
    spell_configuration: list[str] = Field(default_factory=list)
    class_identifier: str | None = None
    created_at: int = 0
    updated_at: int = 0


class CantripSwapTracking(CamelModel):
    """One-swap bookkeeping during a level-up or long rest."""
    has_unlearned: bool = False
    unlearned: str | None = None
    has_learned: bool = False
    learned: str | None = None
    original_checked: list[str] = Field(default_factory=list)


class SpellChoice(BaseModel):
    """One row of a submitted preparation form."""
    uuid: str
    name: str
    spell_level: int = 0
    is_prepared: bool = False
    was_prepared: bool = False
    preparation_mode: str | None = None
    is_ritual: bool = False
    source_class: str | None = None


class ChangeSet(CamelModel):
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed)


class LimitState(CamelModel):
    is_over: bool = False
    current: int = 0
    max: int = 0


class OverLimits(CamelModel):
    cantrips: LimitState = Field(default_factory=LimitState)
    spells: LimitState = Field(default_factory=LimitState)


class ClassChange(CamelModel):
    class_name: str
    cantrip_changes: ChangeSet = Field(default_factory=ChangeSet)
    spell_changes: ChangeSet = Field(default_factory=ChangeSet)
    over_limits: OverLimits = Field(default_factory=OverLimits)

    @property
    def has_changes(self) -> bool:
        return (
            self.cantrip_changes.has_changes
            or self.spell_changes.has_changes
            or self.over_limits.cantrips.is_over
            or self.over_limits.spells.is_over
        )


class GMNotification(CamelModel):
    """Report whispered to the GM when limits are exceeded."""
    actor_name: str
    class_changes: dict[str, ClassChange] = Field(default_factory=dict)


class StatusCheck(BaseModel):
    """Outcome of a "may this checkbox change" query."""
    allowed: bool = True
    message: str = ""


ClassItem.model_rebuild()
