"""
Favorites sync between journal user data and the actor's native favorites.

Native favorites are ``{type: "item", id: ".Item.<itemId>", sort}`` entries.
Spell favorites written here sort after everything else (base 100000);
entries that do not point at an owned spell are never touched.
"""

from __future__ import annotations

import logging
from typing import Iterable

from .constants import FAVORITE_ITEM_PREFIX, FAVORITE_SORT_BASE
from .host import Actor, Compendium
from .identity import canonical_identity
from .models import FavoriteEntry, Spell
from .user_data import UserDataService

logger = logging.getLogger(__name__)


def favorite_id(spell: Spell) -> str:
    return f"{FAVORITE_ITEM_PREFIX}{spell.id}"


class FavoritesSync:
    """Keeps ``actor.favorites`` consistent with journal favorite flags."""

    def __init__(self, user_data: UserDataService, compendium: Compendium | None = None) -> None:
        self.user_data = user_data
        self.compendium = compendium

    async def find_actor_spell_by_uuid(self, spell_uuid: str, actor: Actor) -> Spell | None:
        """Find the owned spell for a raw or canonical identity.

        Tries the item id, then compendium source, legacy source id and
        owned uuid, then a compendium lookup matched by name.
        """
        direct = actor.get_item(spell_uuid)
        if isinstance(direct, Spell):
            return direct
        spells = actor.spells()
        for spell in spells:
            if spell_uuid in (spell.compendium_source, spell.source_id, spell.uuid):
                return spell
        if self.compendium is not None and spell_uuid.startswith("Compendium."):
            try:
                source = await self.compendium.get_spell(spell_uuid)
            except Exception as e:
                logger.warning(f"Favorite lookup for {spell_uuid} failed: {e}")
                return None
            if source is not None:
                for spell in spells:
                    if spell.name == source.name:
                        return spell
        return None

    # ------------------------------------------------------------------ #
    # Single spell
    # ------------------------------------------------------------------ #

    async def add_spell_to_actor_favorites(self, spell_uuid: str, actor: Actor) -> bool:
        """Upsert the native favorite for an owned spell. False when not owned."""
        spell = await self.find_actor_spell_by_uuid(spell_uuid, actor)
        if spell is None:
            return False
        current = actor.favorites
        entry_id = favorite_id(spell)
        if any(entry.id == entry_id for entry in current):
            return True
        current.append(FavoriteEntry(id=entry_id, sort=FAVORITE_SORT_BASE + len(current)))
        try:
            await actor.update_favorites(current)
        except Exception as e:
            logger.error(f"Failed to add {spell.name} to favorites of {actor.name}: {e}")
            return False
        logger.debug(f"Added {spell.name} to favorites of {actor.name}")
        return True

    async def remove_spell_from_actor_favorites(self, spell_uuid: str, actor: Actor) -> bool:
        spell = await self.find_actor_spell_by_uuid(spell_uuid, actor)
        if spell is None:
            return True
        current = actor.favorites
        entry_id = favorite_id(spell)
        remaining = [entry for entry in current if entry.id != entry_id]
        if len(remaining) == len(current):
            return True
        try:
            await actor.update_favorites(remaining)
        except Exception as e:
            logger.error(f"Failed to remove {spell.name} from favorites of {actor.name}: {e}")
            return False
        return True

    async def toggle_spell_favorite(self, spell_uuid: str, actor: Actor, user_id: str | None = None) -> bool:
        """Flip the journal favorite and mirror it on the actor."""
        user_id = user_id or actor.owner_user_id
        data = await self.user_data.get_user_data_for_spell(spell_uuid, user_id, actor.id, actor)
        favorited = not (data.favorited if data else False)
        if not await self.user_data.set_spell_favorite(spell_uuid, favorited, user_id, actor.id, actor):
            return False
        if favorited:
            return await self.add_spell_to_actor_favorites(spell_uuid, actor)
        return await self.remove_spell_from_actor_favorites(spell_uuid, actor)

    # ------------------------------------------------------------------ #
    # Bulk
    # ------------------------------------------------------------------ #

    async def sync_on_save(self, actor: Actor, spell_uuids: Iterable[str], user_id: str | None = None) -> None:
        """Upsert native favorites for saved spells the journal marks favorited."""
        user_id = user_id or actor.owner_user_id
        for spell_uuid in spell_uuids:
            data = await self.user_data.get_user_data_for_spell(spell_uuid, user_id, actor.id, actor)
            if data is not None and data.favorited:
                await self.add_spell_to_actor_favorites(spell_uuid, actor)

    async def process_favorites_from_form(self, actor: Actor, user_id: str | None = None) -> bool:
        """Rewrite spell favorites to match the journal.

        Non-item entries and items that are not owned spells keep their
        place; spell favorites are appended in item order.

        Returns:
            False when the favorites write failed
        """
        user_id = user_id or actor.owner_user_id
        spells = actor.spells()
        await self.user_data.prefetch({canonical_identity(spell) for spell in spells}, user_id, actor.id)

        favorited: list[Spell] = []
        for spell in spells:
            data = await self.user_data.get_user_data_for_spell(canonical_identity(spell), user_id, actor.id)
            if data is not None and data.favorited:
                favorited.append(spell)

        existing = actor.favorites
        has_spell_favorites = any(
            entry.type == "item" and entry.id.startswith(FAVORITE_ITEM_PREFIX) for entry in existing
        )
        if not favorited and not has_spell_favorites:
            return True

        spell_ids = {spell.id for spell in spells}
        preserved = [
            entry
            for entry in existing
            if entry.type != "item"
            or not entry.id.startswith(FAVORITE_ITEM_PREFIX)
            or entry.id[len(FAVORITE_ITEM_PREFIX):] not in spell_ids
        ]
        spell_favorites = [
            FavoriteEntry(id=favorite_id(spell), sort=FAVORITE_SORT_BASE + index)
            for index, spell in enumerate(favorited)
        ]
        try:
            await actor.update_favorites(preserved + spell_favorites)
        except Exception as e:
            logger.error(f"Failed to write favorites for {actor.name}: {e}")
            return False
        logger.debug(
            f"Favorites for {actor.name}: {len(spell_favorites)} spells, {len(preserved)} other entries kept"
        )
        return True


__all__ = ["FavoritesSync", "favorite_id"]
