"""
Spell organisation: deduplicate, tag, enrich and group spells per class.

The organiser joins the actor's owned spell items with the documents
loaded from the class spell list. Owned items win over compendium
documents with the same canonical identity; among owned duplicates the
one with the highest display priority survives.
"""

from __future__ import annotations

import logging
from typing import Iterable

from .constants import (
    PRIORITY_ALWAYS_PREPARED,
    PRIORITY_DEFAULT,
    PRIORITY_PREPARED,
    PRIORITY_RITUAL,
    PRIORITY_SPECIAL_MODE,
    SCROLL_LEVEL,
    SPECIAL_PREPARATION_MODES,
    PreparationContext,
    PreparationMode,
)
from .filter_data import extract_filter_data
from .game_config import GameConfig
from .identity import canonical_identity
from .models import OrganizedSpell, Spell, SpellLevel
from .preparation import PreparationSnapshot, classify, is_special_spell
from .user_data import UserDataService

logger = logging.getLogger(__name__)


def display_priority(spell: Spell) -> int:
    """Rank owned duplicates; the highest rank is displayed."""
    if spell.prepared == 1:
        return PRIORITY_PREPARED
    if spell.prepared == 2:
        return PRIORITY_ALWAYS_PREPARED
    if spell.method in SPECIAL_PREPARATION_MODES:
        return PRIORITY_SPECIAL_MODE
    if spell.method == PreparationMode.RITUAL:
        return PRIORITY_RITUAL
    return PRIORITY_DEFAULT


def sort_key(entry: OrganizedSpell) -> str:
    return entry.name.casefold()


class SpellOrganizer:
    """Builds ``SpellLevel`` lists for class tabs."""

    def __init__(
        self,
        game_config: GameConfig | None = None,
        user_data: UserDataService | None = None,
        user_id: str | None = None,
        actor_id: str | None = None,
    ) -> None:
        self.game_config = game_config or GameConfig.load_default()
        self.user_data = user_data
        self.user_id = user_id
        self.actor_id = actor_id

    def level_name(self, level: int | str) -> str:
        if level == SCROLL_LEVEL:
            return "Scrolls"
        return self.game_config.spell_levels.get(str(level), f"Level {level}")

    # ------------------------------------------------------------------ #
    # Entry construction
    # ------------------------------------------------------------------ #

    def build_entry(
        self,
        spell: Spell,
        class_identifier: str | None,
        context: PreparationContext,
        snapshot: PreparationSnapshot,
        classify_as: PreparationContext | None = None,
    ) -> OrganizedSpell:
        """Wrap one spell with filter data, status and user data.

        Args:
            spell: Document or owned item, already carrying its source class
            class_identifier: Class the status is computed for
            context: Tag stored on the entry
            snapshot: Actor state for status classification
            classify_as: Context passed to the classifier; compendium entries
                use ``preparable`` while owned items are classified by lookup
        """
        entry = OrganizedSpell(
            uuid=canonical_identity(spell),
            id=spell.id,
            name=spell.name,
            level=spell.level,
            school=spell.school,
            spell=spell,
            source_class=spell.source_class,
            preparation_context=context,
            filter_data=extract_filter_data(spell, self.game_config),
            preparation=classify(spell, class_identifier, snapshot, classify_as),
            can_cast_as_ritual=spell.is_ritual and spell.method != PreparationMode.RITUAL,
        )
        if self.user_data is not None and self.user_id:
            self.user_data.enhance_spell(entry, self.user_id, self.actor_id)
        return entry

    async def prefetch_user_data(self, spells: Iterable[Spell], owned: Iterable[Spell]) -> None:
        if self.user_data is None or not self.user_id:
            return
        identities = {canonical_identity(spell) for spell in spells}
        for spell in owned:
            identities.add(canonical_identity(spell))
            identities.add(spell.uuid)
        await self.user_data.prefetch(identities, self.user_id, self.actor_id)

    # ------------------------------------------------------------------ #
    # Organisation
    # ------------------------------------------------------------------ #

    def _owned_survivors(self, owned: list[Spell], class_identifier: str) -> tuple[list[Spell], list[Spell]]:
        """Owned pass: collapse duplicates and split preparable from special."""
        best: dict[str, Spell] = {}
        for spell in owned:
            key = f"{spell.source_class or class_identifier}:{canonical_identity(spell)}"
            existing = best.get(key)
            if existing is None or display_priority(spell) > display_priority(existing):
                best[key] = spell

        preparable: list[Spell] = []
        special: list[Spell] = []
        for spell in best.values():
            if spell.source_class and spell.source_class != class_identifier:
                continue
            (special if is_special_spell(spell) else preparable).append(spell)
        return preparable, special

    def organize(
        self,
        documents: Iterable[Spell],
        class_identifier: str,
        snapshot: PreparationSnapshot,
        show_cantrips: bool = True,
    ) -> list[SpellLevel]:
        """Organise loaded documents and owned items for one class.

        Args:
            documents: Spell documents from the class spell list
            class_identifier: Tab class
            snapshot: Actor state captured for this pass
            show_cantrips: Drop level 0 after grouping when False

        Returns:
            Levels in ascending order, spells sorted by name
        """
        entries: list[OrganizedSpell] = []
        preparable, special = self._owned_survivors(snapshot.owned, class_identifier)

        processed: set[str] = set()
        for spell in preparable:
            identity = canonical_identity(spell)
            if identity in processed:
                continue
            processed.add(identity)
            owned_copy = spell.model_copy(update={"source_class": class_identifier})
            entries.append(self.build_entry(owned_copy, class_identifier, PreparationContext.PREPARABLE, snapshot))

        for document in documents:
            if canonical_identity(document) in processed:
                continue
            doc_copy = document.model_copy(update={"source_class": class_identifier})
            entries.append(
                self.build_entry(
                    doc_copy,
                    class_identifier,
                    PreparationContext.PREPARABLE,
                    snapshot,
                    classify_as=PreparationContext.PREPARABLE,
                )
            )

        for spell in special:
            entries.append(
                self.build_entry(spell, spell.source_class or class_identifier, PreparationContext.SPECIAL, snapshot)
            )

        levels = self.group_by_level(entries)
        if not show_cantrips:
            levels = [level for level in levels if level.level != 0]
        logger.debug(
            f"Organised {len(entries)} spells for {class_identifier} "
            f"({len(preparable)} owned, {len(special)} special)"
        )
        return levels

    def group_by_level(self, entries: Iterable[OrganizedSpell]) -> list[SpellLevel]:
        """Group entries by spell level; names sorted inside each level."""
        grouped: dict[int, list[OrganizedSpell]] = {}
        for entry in entries:
            grouped.setdefault(entry.level, []).append(entry)
        return [
            SpellLevel(level=level, name=self.level_name(level), spells=sorted(grouped[level], key=sort_key))
            for level in sorted(grouped)
        ]


__all__ = ["SpellOrganizer", "display_priority"]
