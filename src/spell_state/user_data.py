"""
Per-user spell notes, favorites and usage statistics.

Each user owns one journal page. Its data is a mapping from canonical
spell identity to ``{notes, actorData: {actorId: {favorited, usageStats}}}``.
Notes are per user; favorites and usage are per user and actor.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Iterable

from pydantic import BaseModel, Field

from .host import Actor, UserDataStore
from .identity import canonical_identity
from .models import OrganizedSpell, Spell
from .settings import SpellStateSettings

logger = logging.getLogger(__name__)

USAGE_CONTEXTS = ("combat", "exploration")


class UsageStats(BaseModel):
    count: int = 0
    last_used: int | None = Field(default=None, alias="lastUsed")
    context_usage: dict[str, int] = Field(
        default_factory=lambda: {context: 0 for context in USAGE_CONTEXTS},
        alias="contextUsage",
    )

    model_config = {"populate_by_name": True}


class UserSpellData(BaseModel):
    """What the engine knows about one spell for one user (and actor)."""
    notes: str = ""
    favorited: bool = False
    usage_stats: UsageStats | None = None
    cached_at: float = Field(default_factory=time.time)

    @property
    def has_notes(self) -> bool:
        return bool(self.notes.strip())


class UserDataService:
    """Cached access to the user data journal."""

    def __init__(self, store: UserDataStore, settings: SpellStateSettings | None = None) -> None:
        self.store = store
        self.settings = settings or SpellStateSettings()
        self._cache: dict[str, UserSpellData | None] = {}

    @staticmethod
    def cache_key(user_id: str, identity: str, actor_id: str | None = None) -> str:
        return f"{user_id}:{actor_id}:{identity}" if actor_id else f"{user_id}:{identity}"

    @staticmethod
    def resolve_identity(spell: Spell | str, actor: Actor | None = None) -> str:
        """Canonical identity for a spell or uuid.

        Actor-owned uuids are resolved through the actor so user data keyed
        by compendium source is found.
        """
        if isinstance(spell, Spell):
            return canonical_identity(spell)
        if actor is not None and spell.startswith("Actor."):
            for owned in actor.spells():
                if owned.uuid == spell:
                    return canonical_identity(owned)
        return spell

    def invalidate(self, user_id: str | None = None) -> None:
        """Drop cached entries, for one user or everyone."""
        if user_id is None:
            self._cache.clear()
            return
        prefix = f"{user_id}:"
        for key in [key for key in self._cache if key.startswith(prefix)]:
            del self._cache[key]

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    @staticmethod
    def _extract(page: dict[str, Any], identity: str, actor_id: str | None) -> UserSpellData:
        record = page.get(identity)
        if not record:
            return UserSpellData()
        notes = record.get("notes") or ""
        actor_data = (record.get("actorData") or {}).get(actor_id) if actor_id else None
        if not actor_data:
            return UserSpellData(notes=notes)
        usage = actor_data.get("usageStats")
        return UserSpellData(
            notes=notes,
            favorited=bool(actor_data.get("favorited")),
            usage_stats=UsageStats.model_validate(usage) if usage else None,
        )

    async def _read_page(self, user_id: str) -> dict[str, Any] | None:
        try:
            return await self.store.read_page(user_id)
        except Exception as e:
            logger.warning(f"Failed to read user data page for {user_id}: {e}")
            return None

    async def get_user_data_for_spell(
        self,
        spell: Spell | str,
        user_id: str,
        actor_id: str | None = None,
        actor: Actor | None = None,
    ) -> UserSpellData | None:
        """User data for one spell; None when the page cannot be read."""
        identity = self.resolve_identity(spell, actor)
        key = self.cache_key(user_id, identity, actor_id)
        if key in self._cache:
            return self._cache[key]
        page = await self._read_page(user_id)
        result = None if page is None else self._extract(page, identity, actor_id)
        self._cache[key] = result
        return result

    async def prefetch(self, identities: Iterable[str], user_id: str, actor_id: str | None = None) -> None:
        """Fill the cache for many identities with a single page read."""
        missing = [
            identity for identity in identities if self.cache_key(user_id, identity, actor_id) not in self._cache
        ]
        if not missing:
            return
        page = await self._read_page(user_id)
        for identity in missing:
            self._cache[self.cache_key(user_id, identity, actor_id)] = (
                None if page is None else self._extract(page, identity, actor_id)
            )
        logger.debug(f"Prefetched user data for {len(missing)} spells ({user_id})")

    def cached(self, identity: str, user_id: str, actor_id: str | None = None) -> UserSpellData | None:
        return self._cache.get(self.cache_key(user_id, identity, actor_id))

    def enhance_spell(self, entry: OrganizedSpell, user_id: str, actor_id: str | None = None) -> OrganizedSpell:
        """Overlay cached user data on an organised spell.

        Looks up the canonical identity first and the raw uuid of the
        underlying document second.
        """
        data = self.cached(entry.uuid, user_id, actor_id)
        if data is None and entry.spell.uuid != entry.uuid:
            data = self.cached(entry.spell.uuid, user_id, actor_id)
        if data is None:
            return entry
        entry.favorited = data.favorited
        entry.filter_data.favorited = data.favorited
        entry.notes = data.notes
        entry.has_notes = data.has_notes
        entry.usage_count = data.usage_stats.count if data.usage_stats else 0
        entry.last_used = data.usage_stats.last_used if data.usage_stats else None
        return entry

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    async def _update(self, user_id: str, identity: str, actor_id: str | None, mutate) -> bool:
        page = await self._read_page(user_id)
        if page is None:
            return False
        record = page.setdefault(identity, {"notes": "", "actorData": {}})
        record.setdefault("actorData", {})
        actor_data = None
        if actor_id:
            actor_data = record["actorData"].setdefault(
                actor_id, {"favorited": False, "usageStats": UsageStats().model_dump(by_alias=True)}
            )
        mutate(record, actor_data)
        try:
            await self.store.write_page(user_id, page)
        except Exception as e:
            logger.error(f"Failed to write user data page for {user_id}: {e}")
            return False
        # Notes are shared by every actor of the user, so drop all variants
        suffix = f":{identity}"
        for key in [key for key in self._cache if key.startswith(f"{user_id}:") and key.endswith(suffix)]:
            del self._cache[key]
        self._cache[self.cache_key(user_id, identity, actor_id)] = self._extract(page, identity, actor_id)
        return True

    async def set_spell_favorite(
        self,
        spell: Spell | str,
        favorited: bool,
        user_id: str,
        actor_id: str,
        actor: Actor | None = None,
    ) -> bool:
        identity = self.resolve_identity(spell, actor)

        def mutate(record: dict, actor_data: dict | None) -> None:
            actor_data["favorited"] = favorited

        return await self._update(user_id, identity, actor_id, mutate)

    async def set_spell_notes(self, spell: Spell | str, notes: str, user_id: str, actor: Actor | None = None) -> bool:
        """Store notes, trimmed to the configured maximum length."""
        identity = self.resolve_identity(spell, actor)
        trimmed = notes.strip()[: self.settings.spell_notes_max_length]

        def mutate(record: dict, actor_data: dict | None) -> None:
            record["notes"] = trimmed

        return await self._update(user_id, identity, None, mutate)

    async def record_usage(
        self,
        spell: Spell | str,
        user_id: str,
        actor_id: str,
        context: str = "exploration",
        actor: Actor | None = None,
    ) -> bool:
        """Count one cast of a spell in ``combat`` or ``exploration``."""
        if context not in USAGE_CONTEXTS:
            raise ValueError(f"Unknown usage context: {context}")
        identity = self.resolve_identity(spell, actor)

        def mutate(record: dict, actor_data: dict | None) -> None:
            stats = UsageStats.model_validate(actor_data.get("usageStats") or {})
            stats.count += 1
            stats.context_usage[context] = stats.context_usage.get(context, 0) + 1
            stats.last_used = int(time.time() * 1000)
            actor_data["usageStats"] = stats.model_dump(by_alias=True)

        return await self._update(user_id, identity, actor_id, mutate)


__all__ = ["UserDataService", "UserSpellData", "UsageStats"]
