"""
Saving preparation choices back to the actor.

The spell manager turns a submitted preparation form (one ``SpellChoice``
per class spell key) into item creates, updates and deletes, keeps the
``preparedSpellsByClass`` flag and its flat ``preparedSpells`` projection
in step, and answers whether a checkbox may change under the actor's
enforcement and swap rules.
"""

from __future__ import annotations

import logging
from typing import Any

from .constants import (
    EnforcementBehavior,
    Flags,
    PreparationMode,
    RitualCastingMode,
    SwapMode,
)
from .detector import ClassDetector, flatten_prepared
from .host import Actor, Compendium, Notifications
from .identity import parse_class_spell_key
from .models import ChangeSet, Spell, SpellChoice, StatusCheck
from .rituals import ritual_copy
from .rules import RuleResolver
from .settings import SpellStateSettings

logger = logging.getLogger(__name__)


def _matches(spell: Spell, uuid: str) -> bool:
    return uuid in (spell.compendium_source, spell.uuid)


class SpellManager:
    """Per-actor preparation writes and change checks."""

    def __init__(
        self,
        actor: Actor,
        compendium: Compendium,
        rules: RuleResolver,
        settings: SpellStateSettings,
        detector: ClassDetector | None = None,
        notifications: Notifications | None = None,
    ) -> None:
        self.actor = actor
        self.compendium = compendium
        self.rules = rules
        self.settings = settings
        self.detector = detector or ClassDetector(rules)
        self.notifications = notifications

    def get_settings(self, class_identifier: str) -> dict[str, Any]:
        """Swap, ritual and cantrip display rules plus enforcement behavior."""
        rules = self.rules.get_class_rules(self.actor, class_identifier)
        return {
            "cantrip_swapping": SwapMode(rules.cantrip_swapping),
            "spell_swapping": SwapMode(rules.spell_swapping),
            "ritual_casting": RitualCastingMode(rules.ritual_casting),
            "show_cantrips": rules.show_cantrips,
            "behavior": self.rules.get_enforcement_behavior(self.actor),
        }

    def _default_mode(self, class_identifier: str) -> str:
        spellcasting_class = self.detector.find(self.actor, class_identifier)
        if spellcasting_class is not None and spellcasting_class.config.type == PreparationMode.PACT:
            return PreparationMode.PACT.value
        return PreparationMode.SPELL.value

    # ------------------------------------------------------------------ #
    # Saving
    # ------------------------------------------------------------------ #

    async def save_class_specific_prepared_spells(
        self,
        class_identifier: str,
        class_spell_data: dict[str, SpellChoice],
    ) -> dict[str, ChangeSet]:
        """Apply a submitted preparation form for one class.

        Args:
            class_identifier: Class whose tab was submitted
            class_spell_data: Choices keyed by ``<class>:<identity>``

        Returns:
            ``{"cantrip_changes": ChangeSet, "spell_changes": ChangeSet}``
        """
        to_create: list[Spell] = []
        to_update: list[dict[str, Any]] = []
        to_remove: list[str] = []
        prepared_keys: list[str] = []
        default_mode = self._default_mode(class_identifier)
        ritual_mode = RitualCastingMode(self.rules.get_class_rules(self.actor, class_identifier).ritual_casting)
        cantrip_changes = ChangeSet()
        spell_changes = ChangeSet()

        for key, choice in class_spell_data.items():
            changes = cantrip_changes if choice.spell_level == 0 else spell_changes
            if choice.is_prepared and not choice.was_prepared:
                changes.added.append(choice.name)
            elif not choice.is_prepared and choice.was_prepared:
                changes.removed.append(choice.name)

            mode = PreparationMode.SPELL.value
            if choice.spell_level > 0:
                mode = choice.preparation_mode or default_mode

            if choice.is_prepared:
                prepared_keys.append(key)
                await self._ensure_spell_on_actor(choice.uuid, class_identifier, mode, ritual_mode, to_create, to_update)
                if choice.is_ritual and ritual_mode in (RitualCastingMode.ALWAYS, RitualCastingMode.PREPARED):
                    await self._ensure_ritual_spell_on_actor(choice.uuid, class_identifier, to_create)
            elif choice.was_prepared:
                self._handle_unpreparing_spell(choice.uuid, class_identifier, ritual_mode, to_remove)
                if choice.is_ritual and ritual_mode == RitualCastingMode.ALWAYS:
                    await self._ensure_ritual_spell_on_actor(choice.uuid, class_identifier, to_create)
            elif choice.is_ritual and ritual_mode == RitualCastingMode.ALWAYS:
                await self._ensure_ritual_spell_on_actor(choice.uuid, class_identifier, to_create)

        prepared_by_class = self.actor.get_flag(Flags.PREPARED_SPELLS_BY_CLASS) or {}
        if not isinstance(prepared_by_class, dict):
            prepared_by_class = {}
        prepared_by_class[class_identifier] = prepared_keys
        await self.actor.set_flag(Flags.PREPARED_SPELLS_BY_CLASS, prepared_by_class)

        if to_create:
            await self.actor.create_spells(to_create)
        if to_update:
            await self.actor.update_spells(to_update)
        if to_remove:
            await self.actor.delete_items(to_remove)

        await self.update_global_prepared_spells_flag()
        await self._cleanup_unprepared_spells()
        logger.debug(
            f"Saved {len(prepared_keys)} prepared spells for {class_identifier} on {self.actor.name}: "
            f"{len(to_create)} created, {len(to_update)} updated, {len(to_remove)} removed"
        )
        return {"cantrip_changes": cantrip_changes, "spell_changes": spell_changes}

    async def _fetch(self, uuid: str) -> Spell | None:
        spell = await self.compendium.get_spell(uuid)
        if spell is None:
            logger.warning(f"Spell {uuid} not found while saving preparation for {self.actor.name}")
        return spell

    async def _ensure_ritual_spell_on_actor(self, uuid: str, class_identifier: str, to_create: list[Spell]) -> None:
        for spell in self.actor.spells():
            if _matches(spell, uuid) and spell.source_class == class_identifier and spell.method == PreparationMode.RITUAL:
                return
        for pending in to_create:
            if pending.uuid == uuid and pending.method == PreparationMode.RITUAL and pending.source_class == class_identifier:
                return
        source = await self._fetch(uuid)
        if source is None:
            return
        to_create.append(ritual_copy(source, class_identifier))

    async def _ensure_spell_on_actor(
        self,
        uuid: str,
        class_identifier: str,
        mode: str,
        ritual_mode: RitualCastingMode,
        to_create: list[Spell],
        to_update: list[dict[str, Any]],
    ) -> None:
        all_matching = [spell for spell in self.actor.spells() if _matches(spell, uuid)]
        for spell in all_matching:
            if spell.source_class and spell.source_class != class_identifier:
                continue
            if spell.prepared == 2 or spell.is_granted or spell.method in (PreparationMode.INNATE, PreparationMode.AT_WILL):
                return

        matching = [spell for spell in all_matching if spell.source_class == class_identifier]
        existing_prepared = next(
            (spell for spell in matching if spell.method != PreparationMode.RITUAL and spell.prepared == 1), None
        )
        existing_ritual = next((spell for spell in matching if spell.method == PreparationMode.RITUAL), None)

        if existing_prepared is not None:
            if existing_prepared.method != mode or existing_prepared.source_class != class_identifier:
                to_update.append(
                    {"id": existing_prepared.id, "method": mode, "prepared": 1, "source_class": class_identifier}
                )
            return

        if existing_ritual is not None and ritual_mode == RitualCastingMode.ALWAYS and mode == PreparationMode.SPELL:
            source = await self._fetch(uuid)
            if source is not None:
                to_create.append(
                    source.model_copy(update={"method": mode, "prepared": 1, "source_class": class_identifier})
                )
            return

        unassigned = next((spell for spell in all_matching if not spell.source_class), None)
        existing = unassigned or (matching[0] if matching else None)
        if existing is not None:
            to_update.append({"id": existing.id, "method": mode, "prepared": 1, "source_class": class_identifier})
            return

        source = await self._fetch(uuid)
        if source is not None:
            to_create.append(source.model_copy(update={"method": mode, "prepared": 1, "source_class": class_identifier}))

    def _handle_unpreparing_spell(
        self,
        uuid: str,
        class_identifier: str,
        ritual_mode: RitualCastingMode,
        to_remove: list[str],
    ) -> None:
        matching = [
            spell for spell in self.actor.spells() if _matches(spell, uuid) and spell.source_class == class_identifier
        ]
        target = next(
            (spell for spell in matching if spell.prepared == 1 and spell.method != PreparationMode.RITUAL), None
        ) or next((spell for spell in matching if spell.prepared == 1), None)
        if target is None or target.prepared == 2 or target.is_granted:
            return
        if (
            target.is_ritual
            and ritual_mode == RitualCastingMode.ALWAYS
            and target.level > 0
            and target.method == PreparationMode.RITUAL
        ):
            return
        to_remove.append(target.id)

    async def update_global_prepared_spells_flag(self) -> list[str]:
        """Rebuild the flat ``preparedSpells`` projection."""
        prepared_by_class = self.actor.get_flag(Flags.PREPARED_SPELLS_BY_CLASS) or {}
        flat = flatten_prepared(prepared_by_class)
        await self.actor.set_flag(Flags.PREPARED_SPELLS, flat)
        return flat

    async def _cleanup_unprepared_spells(self) -> None:
        if not self.settings.auto_delete_unprepared_spells:
            return
        doomed = [
            spell.id
            for spell in self.actor.spells()
            if spell.method == PreparationMode.SPELL and spell.prepared == 0
        ]
        if doomed:
            await self.actor.delete_items(doomed)
            logger.debug(f"Deleted {len(doomed)} unprepared spells from {self.actor.name}")

    async def cleanup_stale_preparation_flags(self) -> int:
        """Drop prepared keys whose owned spell no longer exists.

        Returns:
            Number of keys removed
        """
        prepared_by_class = self.actor.get_flag(Flags.PREPARED_SPELLS_BY_CLASS) or {}
        owned = self.actor.spells()
        removed = 0
        for class_identifier, keys in prepared_by_class.items():
            kept = []
            for key in keys:
                _, identity = parse_class_spell_key(key)
                if any(_matches(spell, identity) and spell.source_class == class_identifier for spell in owned):
                    kept.append(key)
                else:
                    removed += 1
            prepared_by_class[class_identifier] = kept
        if removed:
            await self.actor.set_flag(Flags.PREPARED_SPELLS_BY_CLASS, prepared_by_class)
            await self.update_global_prepared_spells_flag()
            logger.debug(f"Removed {removed} stale preparation keys from {self.actor.name}")
        return removed

    async def unprepare_class(self, class_identifier: str) -> int:
        """Unprepare every chosen spell of a class (after a spell list change).

        Returns:
            Number of owned spells removed
        """
        doomed = [
            spell.id
            for spell in self.actor.spells()
            if spell.source_class == class_identifier
            and spell.prepared == 1
            and spell.method == PreparationMode.SPELL
            and not spell.is_granted
        ]
        if doomed:
            await self.actor.delete_items(doomed)
        prepared_by_class = self.actor.get_flag(Flags.PREPARED_SPELLS_BY_CLASS) or {}
        if prepared_by_class.get(class_identifier):
            prepared_by_class[class_identifier] = []
            await self.actor.set_flag(Flags.PREPARED_SPELLS_BY_CLASS, prepared_by_class)
            await self.update_global_prepared_spells_flag()
        logger.info(f"Unprepared {len(doomed)} spells of {class_identifier} on {self.actor.name}")
        return len(doomed)

    # ------------------------------------------------------------------ #
    # Change checks
    # ------------------------------------------------------------------ #

    def can_change_spell_status(
        self,
        spell: Spell,
        is_checked: bool,
        was_prepared: bool,
        is_level_up: bool,
        is_long_rest: bool,
        class_identifier: str | None,
        current_prepared: int,
        max_prepared: int,
    ) -> StatusCheck:
        """Whether a leveled spell checkbox may move to ``is_checked``."""
        if spell.level == 0:
            return StatusCheck()
        class_identifier = class_identifier or spell.source_class
        if not class_identifier:
            return StatusCheck()
        behavior = self.rules.get_enforcement_behavior(self.actor)
        if behavior in (EnforcementBehavior.UNENFORCED, EnforcementBehavior.NOTIFY_GM):
            if (
                behavior == EnforcementBehavior.NOTIFY_GM
                and is_checked
                and current_prepared >= max_prepared
                and self.notifications
            ):
                self.notifications.info(f"Over the spell limit: {current_prepared + 1}/{max_prepared}")
            return StatusCheck()

        if is_checked and current_prepared >= max_prepared:
            return StatusCheck(allowed=False, message="Class is at its preparation maximum")
        if not is_checked and was_prepared:
            swapping = SwapMode(self.rules.get_class_rules(self.actor, class_identifier).spell_swapping)
            if swapping == SwapMode.NONE:
                return StatusCheck(allowed=False, message="Prepared spells cannot be swapped")
            if swapping == SwapMode.LEVEL_UP and not is_level_up:
                return StatusCheck(allowed=False, message="Spells can only be swapped on level-up")
            if swapping == SwapMode.LONG_REST and not is_long_rest:
                return StatusCheck(allowed=False, message="Spells can only be swapped after a long rest")
        return StatusCheck()


__all__ = ["SpellManager"]
