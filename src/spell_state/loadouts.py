"""
Spell loadouts: named sets of prepared spells stored on the actor.

Loadouts live in the ``spellLoadouts`` flag as ``{id: Loadout}``. A
loadout with no class identifier applies to every class.
"""

from __future__ import annotations

import logging
import time
from typing import Callable

from .constants import LOADOUT_CACHE_TTL_MS, Flags, PreparationContext
from .exceptions import LoadoutError
from .host import Actor, Notifications
from .identity import class_spell_key
from .models import Loadout, OrganizedSpell, SpellChoice, SpellLevel

logger = logging.getLogger(__name__)

TabSource = Callable[[str], list[SpellLevel]]


def _now_ms() -> int:
    return int(time.time() * 1000)


class LoadoutManager:
    """Saves, lists and applies loadouts for one actor.

    Args:
        actor: Owner of the loadouts flag
        tab_source: Returns the current spell levels of a class tab; needed
            to capture or apply a loadout
        notifications: Toast sink for failed user actions
    """

    def __init__(
        self,
        actor: Actor,
        tab_source: TabSource | None = None,
        notifications: Notifications | None = None,
    ) -> None:
        self.actor = actor
        self.tab_source = tab_source
        self.notifications = notifications
        self._cache: dict[str, Loadout] | None = None
        self._cache_time = 0.0

    def _invalidate_cache(self) -> None:
        self._cache = None
        self._cache_time = 0.0

    def _read_flag(self) -> dict[str, Loadout]:
        raw = self.actor.get_flag(Flags.SPELL_LOADOUTS) or {}
        loadouts = {}
        for loadout_id, data in raw.items():
            try:
                loadouts[loadout_id] = Loadout.model_validate(data)
            except ValueError as e:
                logger.warning(f"Ignoring malformed loadout {loadout_id} on {self.actor.name}: {e}")
        return loadouts

    def _fail(self, message: str) -> None:
        logger.error(message)
        if self.notifications:
            self.notifications.error(message)

    # ------------------------------------------------------------------ #
    # Storage
    # ------------------------------------------------------------------ #

    def get_available_loadouts(self, class_identifier: str | None = None) -> list[Loadout]:
        """Loadouts usable by a class (class-less loadouts included)."""
        now = time.monotonic()
        if self._cache is None or (now - self._cache_time) * 1000 > LOADOUT_CACHE_TTL_MS:
            self._cache = self._read_flag()
            self._cache_time = now
        loadouts = list(self._cache.values())
        if class_identifier:
            loadouts = [
                loadout
                for loadout in loadouts
                if not loadout.class_identifier or loadout.class_identifier == class_identifier
            ]
        return loadouts

    async def save_loadout(
        self,
        name: str,
        description: str,
        spell_configuration: list[str],
        class_identifier: str | None = None,
    ) -> Loadout | None:
        """Store a new loadout; None (and a toast) on failure."""
        try:
            if not name or not name.strip():
                raise LoadoutError("Loadout name is required")
            stamp = _now_ms()
            loadout = Loadout(
                name=name.strip(),
                description=(description or "").strip(),
                spell_configuration=list(spell_configuration),
                class_identifier=class_identifier,
                created_at=stamp,
                updated_at=stamp,
            )
            loadouts = self.actor.get_flag(Flags.SPELL_LOADOUTS) or {}
            loadouts[loadout.id] = loadout.to_flag()
            await self.actor.set_flag(Flags.SPELL_LOADOUTS, loadouts)
        except Exception as e:
            self._fail(f"Could not save loadout {name!r}: {e}")
            return None
        self._invalidate_cache()
        logger.info(f"Saved loadout {loadout.name} for {class_identifier or 'all classes'} on {self.actor.name}")
        return loadout

    def load_loadout(self, loadout_id: str) -> Loadout | None:
        return self._read_flag().get(loadout_id)

    async def delete_loadout(self, loadout_id: str) -> bool:
        try:
            loadouts = self.actor.get_flag(Flags.SPELL_LOADOUTS) or {}
            if loadout_id not in loadouts:
                raise LoadoutError("Loadout not found", {"loadout_id": loadout_id})
            name = loadouts.pop(loadout_id).get("name", loadout_id)
            await self.actor.set_flag(Flags.SPELL_LOADOUTS, loadouts)
        except Exception as e:
            self._fail(f"Could not delete loadout {loadout_id}: {e}")
            return False
        self._invalidate_cache()
        logger.info(f"Deleted loadout {name} on {self.actor.name}")
        return True

    # ------------------------------------------------------------------ #
    # Tab interaction
    # ------------------------------------------------------------------ #

    def _choosable(self, class_identifier: str) -> list[OrganizedSpell]:
        if self.tab_source is None:
            raise LoadoutError("No spell book tab available")
        return [
            entry
            for level in self.tab_source(class_identifier)
            for entry in level.spells
            if entry.preparation_context == PreparationContext.PREPARABLE
            and entry.source_class == class_identifier
        ]

    def capture_current_state(self, class_identifier: str) -> list[str]:
        """Identities of the prepared, enabled entries in a class tab."""
        try:
            entries = self._choosable(class_identifier)
        except LoadoutError as e:
            logger.error(f"Cannot capture loadout for {class_identifier}: {e.message}")
            return []
        captured = [entry.uuid for entry in entries if entry.preparation.prepared and not entry.preparation.disabled]
        logger.debug(f"Captured {len(captured)} prepared spells for {class_identifier}")
        return captured

    def apply_loadout(self, loadout_id: str, class_identifier: str) -> dict[str, SpellChoice] | None:
        """Preparation form for a class with exactly the loadout's spells checked.

        Disabled entries keep their current state. The result is meant for
        ``SpellManager.save_class_specific_prepared_spells``.
        """
        try:
            loadout = self.load_loadout(loadout_id)
            if loadout is None:
                raise LoadoutError("Loadout not found", {"loadout_id": loadout_id})
            entries = self._choosable(class_identifier)
        except LoadoutError as e:
            self._fail(f"Could not apply loadout {loadout_id}: {e.message}")
            return None

        wanted = set(loadout.spell_configuration)
        choices: dict[str, SpellChoice] = {}
        for entry in entries:
            was_prepared = entry.preparation.prepared
            is_prepared = was_prepared if entry.preparation.disabled else entry.uuid in wanted
            choices[class_spell_key(class_identifier, entry.uuid)] = SpellChoice(
                uuid=entry.uuid,
                name=entry.name,
                spell_level=entry.level,
                is_prepared=is_prepared,
                was_prepared=was_prepared,
                preparation_mode=entry.spell.method,
                is_ritual=entry.spell.is_ritual,
                source_class=class_identifier,
            )
        logger.info(f"Applied loadout {loadout.name} to {class_identifier} on {self.actor.name}")
        return choices


__all__ = ["LoadoutManager"]
