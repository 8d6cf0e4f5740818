"""
Cantrip limits, level-up detection and swap tracking.

Cantrips known come from the class's scale values; the first configured
scale key present wins. Swapping is governed by the class's
``cantripSwapping`` rule and limited to one unlearn/learn pair per
level-up or long rest, tracked in the ``cantripSwapTracking`` flag as
``{class: {levelUp|longRest: CantripSwapTracking}}``.
"""

from __future__ import annotations

import logging
from typing import Any

from .constants import ClassIdentifiers, EnforcementBehavior, Flags, SwapMode
from .detector import ClassDetector
from .host import Actor, Notifications
from .models import CantripSwapTracking, SpellcastingClass, Spell, StatusCheck
from .rules import RuleResolver
from .settings import SpellStateSettings

logger = logging.getLogger(__name__)

LEVEL_UP_CONTEXT = "levelUp"
LONG_REST_CONTEXT = "longRest"


def _scale_number(value: Any) -> int | None:
    """Scale values are stored either bare or as ``{"value": n}``."""
    if isinstance(value, dict):
        value = value.get("value")
    if isinstance(value, bool) or value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class CantripManager:
    """Per-actor cantrip bookkeeping."""

    def __init__(
        self,
        actor: Actor,
        rules: RuleResolver,
        settings: SpellStateSettings,
        detector: ClassDetector | None = None,
        notifications: Notifications | None = None,
    ) -> None:
        self.actor = actor
        self.rules = rules
        self.settings = settings
        self.detector = detector or ClassDetector(rules)
        self.notifications = notifications
        self._max_by_class: dict[str, int] | None = None

    def clear_cache(self) -> None:
        self._max_by_class = None

    # ------------------------------------------------------------------ #
    # Limits
    # ------------------------------------------------------------------ #

    def _initialize_cache(self) -> dict[str, int]:
        if self._max_by_class is None:
            self._max_by_class = {
                spellcasting_class.identifier: self._calculate_max(spellcasting_class)
                for spellcasting_class in self.detector.detect(self.actor)
            }
        return self._max_by_class

    def _calculate_max(self, spellcasting_class: SpellcastingClass) -> int:
        scale_values = dict(spellcasting_class.class_item.scale_values)
        subclass = spellcasting_class.class_item.subclass
        if subclass is not None:
            scale_values.update(subclass.scale_values)
        base = 0
        for key in self.settings.cantrip_scale_keys:
            number = _scale_number(scale_values.get(key))
            if number is not None:
                base = number
                break
        if base == 0:
            return 0
        rules = self.rules.get_class_rules(self.actor, spellcasting_class.identifier)
        if not rules.show_cantrips:
            return 0
        return max(0, base + rules.cantrip_preparation_bonus)

    def get_max_cantrips(self, class_identifier: str) -> int:
        return self._initialize_cache().get(class_identifier, 0)

    def get_total_max_cantrips(self) -> int:
        return sum(self._initialize_cache().values())

    def get_current_count(self, class_identifier: str | None = None) -> int:
        """Prepared cantrips, optionally limited to one class."""
        return sum(
            1
            for spell in self.actor.spells()
            if spell.level == 0
            and spell.prepared == 1
            and (class_identifier is None or spell.source_class == class_identifier)
        )

    def can_be_leveled_up(self) -> bool:
        """True after a character level or cantrip maximum increase."""
        previous_level = self.actor.get_flag(Flags.PREVIOUS_LEVEL) or 0
        previous_max = self.actor.get_flag(Flags.PREVIOUS_CANTRIP_MAX) or 0
        current_level = self.actor.level
        current_max = self.get_total_max_cantrips()
        if previous_level == 0:
            return current_level > 0
        return current_level > previous_level or current_max > previous_max

    # ------------------------------------------------------------------ #
    # Change checks
    # ------------------------------------------------------------------ #

    def can_change_cantrip_status(
        self,
        spell: Spell,
        is_checked: bool,
        is_level_up: bool,
        is_long_rest: bool,
        ui_cantrip_count: int | None = None,
        class_identifier: str | None = None,
    ) -> StatusCheck:
        """Whether a cantrip checkbox may move to ``is_checked``.

        Args:
            spell: The cantrip being toggled
            is_checked: Target state of the checkbox
            is_level_up: A level-up is pending
            is_long_rest: A long rest was just taken
            ui_cantrip_count: Count currently checked in the open form, if
                it differs from what is saved
            class_identifier: Owning class; defaults to the spell's source class
        """
        if spell.level != 0:
            return StatusCheck()
        class_identifier = class_identifier or spell.source_class
        if not class_identifier:
            return StatusCheck()

        behavior = self.rules.get_enforcement_behavior(self.actor)
        current = ui_cantrip_count if ui_cantrip_count is not None else self.get_current_count(class_identifier)
        maximum = self.get_max_cantrips(class_identifier)
        if behavior in (EnforcementBehavior.UNENFORCED, EnforcementBehavior.NOTIFY_GM):
            if behavior == EnforcementBehavior.NOTIFY_GM and is_checked and current >= maximum and self.notifications:
                self.notifications.info(f"Over the cantrip limit: {current + 1}/{maximum}")
            return StatusCheck()

        if is_checked:
            if current >= maximum:
                return StatusCheck(allowed=False, message="Maximum cantrips reached")
            return StatusCheck()

        swapping = self.rules.get_class_rules(self.actor, class_identifier).cantrip_swapping
        if swapping == SwapMode.NONE:
            return StatusCheck(allowed=False, message="Cantrips cannot be swapped")
        if swapping == SwapMode.LEVEL_UP and not is_level_up:
            return StatusCheck(allowed=False, message="Cantrips can only be swapped on level-up")
        if swapping == SwapMode.LONG_REST:
            if class_identifier != ClassIdentifiers.WIZARD:
                return StatusCheck(allowed=False, message="Long rest cantrip swapping is a wizard rule")
            if not is_long_rest:
                return StatusCheck(allowed=False, message="Cantrips can only be swapped after a long rest")

        if (is_level_up and swapping == SwapMode.LEVEL_UP) or (is_long_rest and swapping == SwapMode.LONG_REST):
            tracking = self._get_tracking(class_identifier, is_level_up, is_long_rest)
            uuid = spell.uuid
            if tracking.has_unlearned and tracking.unlearned != uuid and uuid in tracking.original_checked:
                return StatusCheck(allowed=False, message="Only one cantrip may be swapped")
        return StatusCheck()

    def _get_tracking(self, class_identifier: str, is_level_up: bool, is_long_rest: bool) -> CantripSwapTracking:
        if not is_level_up and not is_long_rest:
            return CantripSwapTracking()
        context = LEVEL_UP_CONTEXT if is_level_up else LONG_REST_CONTEXT
        stored = (self.actor.get_flag(Flags.CANTRIP_SWAP_TRACKING) or {}).get(class_identifier, {}).get(context)
        return CantripSwapTracking.model_validate(stored) if stored else CantripSwapTracking()

    # ------------------------------------------------------------------ #
    # Tracking writes
    # ------------------------------------------------------------------ #

    async def track_cantrip_change(
        self,
        spell: Spell,
        is_checked: bool,
        is_level_up: bool,
        is_long_rest: bool,
        class_identifier: str | None = None,
    ) -> CantripSwapTracking | None:
        """Record one toggle in the swap tracking flag.

        Returns:
            The updated tracking record, or None when nothing is tracked
        """
        if spell.level != 0 or not (is_level_up or is_long_rest):
            return None
        class_identifier = class_identifier or spell.source_class
        if not class_identifier:
            return None
        swapping = self.rules.get_class_rules(self.actor, class_identifier).cantrip_swapping
        if swapping == SwapMode.NONE:
            return None
        if swapping == SwapMode.LONG_REST and class_identifier != ClassIdentifiers.WIZARD:
            return None

        context = LEVEL_UP_CONTEXT if is_level_up else LONG_REST_CONTEXT
        all_tracking = self.actor.get_flag(Flags.CANTRIP_SWAP_TRACKING) or {}
        stored = all_tracking.get(class_identifier, {}).get(context)
        if stored:
            tracking = CantripSwapTracking.model_validate(stored)
        else:
            tracking = CantripSwapTracking(
                original_checked=[
                    owned.uuid
                    for owned in self.actor.spells()
                    if owned.level == 0 and owned.prepared == 1 and owned.source_class == class_identifier
                ]
            )

        uuid = spell.uuid
        if not is_checked and uuid in tracking.original_checked:
            if tracking.unlearned == uuid:
                tracking.has_unlearned, tracking.unlearned = False, None
            else:
                tracking.has_unlearned, tracking.unlearned = True, uuid
        elif is_checked and uuid not in tracking.original_checked:
            if tracking.learned == uuid:
                tracking.has_learned, tracking.learned = False, None
            else:
                tracking.has_learned, tracking.learned = True, uuid
        elif not is_checked and tracking.learned == uuid:
            tracking.has_learned, tracking.learned = False, None
        elif is_checked and tracking.unlearned == uuid:
            tracking.has_unlearned, tracking.unlearned = False, None

        all_tracking.setdefault(class_identifier, {})[context] = tracking.to_flag()
        await self.actor.set_flag(Flags.CANTRIP_SWAP_TRACKING, all_tracking)
        return tracking

    async def _drop_context(self, context: str) -> None:
        all_tracking = self.actor.get_flag(Flags.CANTRIP_SWAP_TRACKING) or {}
        for class_identifier in list(all_tracking):
            entry = all_tracking[class_identifier] or {}
            entry.pop(context, None)
            if entry:
                all_tracking[class_identifier] = entry
            else:
                del all_tracking[class_identifier]
        if all_tracking:
            await self.actor.set_flag(Flags.CANTRIP_SWAP_TRACKING, all_tracking)
        else:
            await self.actor.unset_flag(Flags.CANTRIP_SWAP_TRACKING)

    async def complete_cantrips_level_up(self) -> None:
        """Remember the current level and maximum, then drop level-up tracking."""
        await self.actor.set_flag(Flags.PREVIOUS_LEVEL, self.actor.level)
        await self.actor.set_flag(Flags.PREVIOUS_CANTRIP_MAX, self.get_total_max_cantrips())
        await self._drop_context(LEVEL_UP_CONTEXT)
        logger.debug(f"Completed cantrip level-up for {self.actor.name}")

    async def reset_swap_tracking(self) -> None:
        """Forget long rest swap tracking."""
        await self._drop_context(LONG_REST_CONTEXT)


__all__ = ["CantripManager"]
