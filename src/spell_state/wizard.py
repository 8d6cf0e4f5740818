"""
Wizard personal spellbooks.

A wizard-enabled class keeps a personal spellbook separate from the
actor's owned spell items. Every addition, free or paid, is recorded in
the ``wizardCopiedSpells_<class>`` flag; the spellbook is the ordered set
of identities in that record list. Free additions (``cost == 0``) draw
from ``startingSpells + spellsPerLevel * (level - 1)``.

The tab builder turns a spellbook into two tabs: the preparation tab
(``<class>Tab``) and the spellbook tab (``wizardbook-<class>``).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from .constants import (
    SCROLL_LEVEL,
    WIZARD_DEFAULT_RITUAL_CASTING,
    Flags,
    PreparationContext,
    WizardSpellSource,
    wizard_flag,
)
from .detector import calculate_max_spell_level
from .exceptions import SpellbookError
from .host import Actor, Compendium, Notifications
from .identity import canonical_identity
from .loader import SpellListResolver, SpellLoader
from .models import (
    ClassItem,
    ClassSpellData,
    OrganizedSpell,
    ScrollItem,
    SpellcastingClass,
    Spell,
    SpellLevel,
    TabEntry,
    WizardCopyRecord,
)
from .organizer import SpellOrganizer, sort_key
from .preparation import PreparationSnapshot, PreparationStatsCalculator
from .rules import RuleResolver
from .settings import SpellStateSettings

logger = logging.getLogger(__name__)


def prep_tab_id(class_identifier: str) -> str:
    return f"{class_identifier}Tab"


def wizard_tab_id(class_identifier: str) -> str:
    return f"wizardbook-{class_identifier}"


class WizardSpellbook:
    """Personal spellbook and learning economy for one wizard-enabled class."""

    def __init__(
        self,
        actor: Actor,
        class_identifier: str,
        rules: RuleResolver,
        settings: SpellStateSettings | None = None,
        notifications: Notifications | None = None,
    ) -> None:
        self.actor = actor
        self.class_identifier = class_identifier
        self.rules = rules
        self.settings = settings or SpellStateSettings()
        self.notifications = notifications
        self._records_cache: list[WizardCopyRecord] | None = None

    @property
    def records_flag(self) -> str:
        return wizard_flag(Flags.WIZARD_COPIED_SPELLS, self.class_identifier)

    @property
    def ritual_flag(self) -> str:
        return wizard_flag(Flags.WIZARD_RITUAL_CASTING, self.class_identifier)

    @property
    def class_item(self) -> ClassItem | None:
        for class_item in self.actor.class_items():
            if class_item.class_identifier == self.class_identifier:
                return class_item
        return None

    @property
    def class_levels(self) -> int:
        class_item = self.class_item
        return class_item.levels if class_item is not None and class_item.levels else 1

    def invalidate_cache(self) -> None:
        self._records_cache = None

    async def ensure_flags(self) -> None:
        """Create the record list and ritual flag when absent."""
        if self.actor.get_flag(self.records_flag) is None:
            await self.actor.set_flag(self.records_flag, [])
        if self.actor.get_flag(self.ritual_flag) is None:
            await self.actor.set_flag(self.ritual_flag, WIZARD_DEFAULT_RITUAL_CASTING)

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def records(self) -> list[WizardCopyRecord]:
        if self._records_cache is None:
            raw = self.actor.get_flag(self.records_flag) or []
            self._records_cache = [WizardCopyRecord.model_validate(entry) for entry in raw]
        return list(self._records_cache)

    def get(self) -> list[str]:
        """Spellbook identities in the order they were added."""
        seen: list[str] = []
        for record in self.records():
            if record.spell_uuid not in seen:
                seen.append(record.spell_uuid)
        return seen

    def is_in_spellbook(self, identity: str) -> bool:
        return any(record.spell_uuid == identity for record in self.records())

    def get_record(self, identity: str) -> WizardCopyRecord | None:
        for record in self.records():
            if record.spell_uuid == identity:
                return record
        return None

    def get_learning_source(self, identity: str) -> WizardSpellSource | None:
        """How a spell entered the book; None when it is not there."""
        record = self.get_record(identity)
        if record is None:
            return None
        if record.from_scroll:
            return WizardSpellSource.SCROLL
        if record.cost > 0:
            return WizardSpellSource.COPIED
        return WizardSpellSource.FREE

    def total_free_spells(self) -> int:
        rules = self.rules.get_class_rules(self.actor, self.class_identifier)
        return rules.starting_spells + rules.spells_per_level * max(0, self.class_levels - 1)

    def max_spells_allowed(self) -> int:
        """Book size shown as full; free additions never exceed it."""
        return self.total_free_spells()

    def used_free_spells(self) -> int:
        return sum(1 for record in self.records() if record.cost == 0)

    def remaining_free_spells(self) -> int:
        return max(0, self.total_free_spells() - self.used_free_spells())

    def is_at_max(self) -> bool:
        return len(self.get()) >= self.max_spells_allowed()

    def get_copying_cost(self, spell: Spell) -> tuple[int, bool]:
        """``(cost, is_free)`` for adding a spell right now."""
        if spell.level == 0 or self.remaining_free_spells() > 0:
            return 0, True
        rules = self.rules.get_class_rules(self.actor, self.class_identifier)
        return spell.level * rules.spell_learning_cost_multiplier, False

    def get_copying_time(self, spell: Spell) -> int:
        if spell.level == 0:
            return 1
        rules = self.rules.get_class_rules(self.actor, self.class_identifier)
        return spell.level * rules.spell_learning_time_multiplier

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def add(self, identity: str, cost: int = 0, time_spent: int = 0, from_scroll: bool = False) -> WizardCopyRecord:
        """Record a spellbook addition.

        Raises:
            SpellbookError: If the spell is already in the book, or a free
                addition is requested with no free spells left
        """
        if self.is_in_spellbook(identity):
            raise SpellbookError(f"{identity} is already in the spellbook", {"class": self.class_identifier})
        if cost == 0 and self.remaining_free_spells() <= 0:
            raise SpellbookError(
                "No free spellbook additions remain",
                {"class": self.class_identifier, "total": self.total_free_spells()},
            )
        record = WizardCopyRecord(
            spell_uuid=identity,
            date_copied=int(time.time() * 1000),
            cost=cost,
            time_spent=time_spent,
            from_scroll=from_scroll,
        )
        stored = self.actor.get_flag(self.records_flag) or []
        stored.append(record.to_flag())
        await self.actor.set_flag(self.records_flag, stored)
        self.invalidate_cache()
        logger.info(f"Added {identity} to {self.actor.name}'s {self.class_identifier} spellbook (cost {cost})")
        return record

    async def copy_spell(self, spell: Spell, from_scroll: bool = False) -> bool:
        """Learn a spell, paying for it when no free additions remain.

        Returns:
            True when the spell was added
        """
        if spell.level == 0:
            self._warn(f"{spell.name} is a cantrip and is not kept in the spellbook")
            return False
        identity = canonical_identity(spell)
        cost, is_free = self.get_copying_cost(spell)
        time_spent = self.get_copying_time(spell)
        if not is_free and cost > 0 and self.settings.deduct_spell_learning_cost:
            if not await self.actor.spend_currency(cost):
                self._warn(f"Not enough gold to copy {spell.name} ({cost} gp)")
                return False
        try:
            await self.add(identity, 0 if is_free else cost, time_spent, from_scroll)
        except SpellbookError as e:
            self._warn(e.message)
            return False
        if self.notifications:
            self.notifications.info(f"{spell.name} added to the spellbook")
        return True

    def _warn(self, message: str) -> None:
        logger.warning(f"{self.actor.name}: {message}")
        if self.notifications:
            self.notifications.warn(message)


# ---------------------------------------------------------------------- #
# Scrolls
# ---------------------------------------------------------------------- #


@dataclass
class ScrollSpell:
    """A learnable spell found on a scroll the actor carries."""
    scroll: ScrollItem
    spell: Spell
    spell_uuid: str


class ScrollScanner:
    """Finds scrolls a wizard could learn from."""

    def __init__(self, actor: Actor, compendium: Compendium, settings: SpellStateSettings | None = None) -> None:
        self.actor = actor
        self.compendium = compendium
        self.settings = settings or SpellStateSettings()

    async def scan(self, max_spell_level: int) -> list[ScrollSpell]:
        """Scroll spells at or below ``max_spell_level`` (cantrips always)."""
        found: list[ScrollSpell] = []
        for scroll in self.actor.scrolls():
            if scroll.consumable_type != "scroll" or not scroll.spell_uuid:
                continue
            try:
                spell = await self.compendium.get_spell(scroll.spell_uuid)
            except Exception as e:
                logger.warning(f"Could not read spell on scroll {scroll.name}: {e}")
                continue
            if spell is None:
                continue
            if spell.level > 0 and spell.level > max_spell_level:
                continue
            found.append(ScrollSpell(scroll=scroll, spell=spell, spell_uuid=scroll.spell_uuid))
        return found

    async def learn_from_scroll(self, scroll_spell: ScrollSpell, spellbook: WizardSpellbook) -> bool:
        """Copy a scroll's spell into the spellbook, consuming the scroll if configured."""
        if not await spellbook.copy_spell(scroll_spell.spell, from_scroll=True):
            return False
        if self.settings.consume_scrolls_when_learning:
            await self.actor.delete_items([scroll_spell.scroll.id])
            if spellbook.notifications:
                spellbook.notifications.info(f"{scroll_spell.scroll.name} was consumed")
        return True


# ---------------------------------------------------------------------- #
# Tabs
# ---------------------------------------------------------------------- #


class WizardTabBuilder:
    """Builds the preparation and spellbook tabs for a wizard-enabled class."""

    def __init__(
        self,
        resolver: SpellListResolver,
        loader: SpellLoader,
        organizer: SpellOrganizer,
        stats: PreparationStatsCalculator,
        rules: RuleResolver,
        settings: SpellStateSettings,
    ) -> None:
        self.resolver = resolver
        self.loader = loader
        self.organizer = organizer
        self.stats = stats
        self.rules = rules
        self.settings = settings

    async def build(
        self,
        actor: Actor,
        spellcasting_class: SpellcastingClass,
        spellbook: WizardSpellbook,
        snapshot: PreparationSnapshot,
        scroll_spells: list[ScrollSpell] | None = None,
    ) -> ClassSpellData:
        identifier = spellcasting_class.identifier
        rules = self.rules.get_class_rules(actor, identifier)
        max_level = calculate_max_spell_level(spellcasting_class)
        class_list = await self.resolver.get_class_spell_list(actor, spellcasting_class)
        book = set(spellbook.get())
        documents = await self.loader.load_documents(class_list | book, max(1, max_level))
        await self.organizer.prefetch_user_data(documents, snapshot.owned)

        prep_documents = [
            document
            for document in documents
            if (document.level == 0 and rules.show_cantrips and canonical_identity(document) in class_list)
            or (document.level > 0 and canonical_identity(document) in book)
        ]
        prep_levels = self.organizer.organize(prep_documents, identifier, snapshot, rules.show_cantrips)
        preparation = self.stats.compute(
            identifier,
            prep_levels,
            spellcasting_class.config.preparation_max,
            rules.spell_preparation_bonus,
            spellcasting_class.levels,
        )

        at_max = spellbook.is_at_max()
        book_entries: list[OrganizedSpell] = []
        for document in documents:
            identity = canonical_identity(document)
            if document.level == 0:
                continue
            on_class_list = identity in class_list
            from_scroll = spellbook.get_learning_source(identity) == WizardSpellSource.SCROLL
            if not on_class_list and not (identity in book and from_scroll):
                continue
            entry = self.organizer.build_entry(
                document.model_copy(update={"source_class": identifier}),
                identifier,
                PreparationContext.WIZARD_LEARNING,
                snapshot,
                classify_as=PreparationContext.PREPARABLE,
            )
            self._tag_book_entry(entry, identity, spellbook, at_max)
            if not on_class_list:
                record = spellbook.get_record(identity)
                entry.learned_from_scroll = True
                entry.scroll_metadata = record.to_flag() if record else None
            book_entries.append(entry)
        book_levels = self.organizer.group_by_level(book_entries)

        scroll_level = self._scroll_level(scroll_spells or [], identifier, spellbook, snapshot, at_max)
        if scroll_level is not None:
            book_levels.insert(0, scroll_level)

        remaining = spellbook.remaining_free_spells()
        tab_data = {
            prep_tab_id(identifier): TabEntry(spell_levels=prep_levels, spell_preparation=preparation),
            wizard_tab_id(identifier): TabEntry(
                spell_levels=book_levels,
                spell_preparation=preparation,
                wizard_total_spellbook_count=len(book),
                wizard_free_spellbook_count=spellbook.total_free_spells(),
                wizard_remaining_free_spells=remaining,
                wizard_has_free_spells=remaining > 0,
                wizard_max_spellbook_count=spellbook.max_spells_allowed(),
                wizard_is_at_max=at_max,
            ),
        }
        logger.debug(
            f"Wizard tabs for {identifier} on {actor.name}: {len(book)} in book, {remaining} free remaining"
        )
        return ClassSpellData(
            identifier=identifier,
            class_name=spellcasting_class.name,
            class_item=spellcasting_class.class_item,
            spell_levels=prep_levels,
            spell_preparation=preparation,
            tab_data=tab_data,
        )

    def _tag_book_entry(self, entry: OrganizedSpell, identity: str, spellbook: WizardSpellbook, at_max: bool) -> None:
        in_book = spellbook.is_in_spellbook(identity)
        entry.in_wizard_spellbook = in_book
        entry.can_add_to_spellbook = not in_book and entry.level > 0
        source = spellbook.get_learning_source(identity)
        entry.learning_source = source.value if source else None
        entry.preparation.disabled = True
        entry.is_at_max_spells = at_max
        entry.show_compare_link = self.settings.spell_comparison_max > 1

    def _scroll_level(
        self,
        scroll_spells: list[ScrollSpell],
        identifier: str,
        spellbook: WizardSpellbook,
        snapshot: PreparationSnapshot,
        at_max: bool,
    ) -> SpellLevel | None:
        learnable = [scroll_spell for scroll_spell in scroll_spells if scroll_spell.spell.level > 0]
        if not learnable:
            return None
        entries = []
        for scroll_spell in learnable:
            entry = self.organizer.build_entry(
                scroll_spell.spell.model_copy(update={"source_class": identifier}),
                identifier,
                PreparationContext.WIZARD_LEARNING,
                snapshot,
                classify_as=PreparationContext.PREPARABLE,
            )
            identity = canonical_identity(scroll_spell.spell)
            self._tag_book_entry(entry, identity, spellbook, at_max)
            entry.can_add_to_spellbook = False
            entry.is_from_scroll = True
            entry.can_learn_from_scroll = not entry.in_wizard_spellbook
            entry.scroll_id = scroll_spell.scroll.id
            entry.scroll_name = scroll_spell.scroll.name
            entry.scroll_metadata = {"scrollId": scroll_spell.scroll.id, "scrollName": scroll_spell.scroll.name}
            entries.append(entry)
        return SpellLevel(
            level=SCROLL_LEVEL,
            name=self.organizer.level_name(SCROLL_LEVEL),
            spells=sorted(entries, key=sort_key),
        )


__all__ = [
    "WizardSpellbook",
    "ScrollScanner",
    "ScrollSpell",
    "WizardTabBuilder",
    "prep_tab_id",
    "wizard_tab_id",
]
