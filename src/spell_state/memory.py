"""
In-memory host implementations.

Useful for tests, scripted tooling and hosts that keep everything in
process. Flag values are deep-copied on read and write so callers can
never mutate stored state in place.
"""

from __future__ import annotations

import copy
import logging
from typing import Any, Iterable

from shortuuid import random

from .host import Actor, Compendium, Notifications, UserDataStore
from .models import FavoriteEntry, HostItem, Spell, SpellList

logger = logging.getLogger(__name__)


class InMemoryActor(Actor):
    """Actor backed by plain Python containers."""

    def __init__(
        self,
        name: str,
        items: list[HostItem] | None = None,
        flags: dict[str, Any] | None = None,
        id: str | None = None,
        gold: int = 0,
        owner_user_id: str = "gm",
    ) -> None:
        super().__init__(id or random(length=16), name, owner_user_id)
        self._items: list[HostItem] = list(items or [])
        self._flags: dict[str, Any] = copy.deepcopy(flags or {})
        self._favorites: list[FavoriteEntry] = []
        self.gold = gold
        self.write_count = 0

    @property
    def items(self) -> list[HostItem]:
        return list(self._items)

    def add_item(self, item: HostItem) -> HostItem:
        """Synchronously embed an item as-is (test setup helper)."""
        self._items.append(item)
        return item

    def remove_item(self, item_id: str) -> None:
        self._items = [item for item in self._items if item.id != item_id]

    async def create_spells(self, spells: Iterable[Spell]) -> list[Spell]:
        created = []
        for spell in spells:
            item_id = random(length=16)
            owned = spell.model_copy(
                deep=True,
                update={"id": item_id, "uuid": f"Actor.{self.id}.Item.{item_id}"},
            )
            if owned.compendium_source is None and spell.uuid.startswith("Compendium."):
                owned.compendium_source = spell.uuid
            self._items.append(owned)
            created.append(owned)
        self.write_count += 1
        return created

    async def update_spells(self, updates: list[dict[str, Any]]) -> None:
        for update in updates:
            changes = dict(update)
            item_id = changes.pop("id")
            for index, item in enumerate(self._items):
                if item.id == item_id:
                    self._items[index] = item.model_copy(update=changes)
                    break
            else:
                logger.warning(f"Update skipped, item {item_id} not found on {self.name}")
        self.write_count += 1

    async def delete_items(self, ids: Iterable[str]) -> None:
        doomed = set(ids)
        self._items = [item for item in self._items if item.id not in doomed]
        self.write_count += 1

    def get_flag(self, key: str, default: Any = None) -> Any:
        if key not in self._flags:
            return default
        return copy.deepcopy(self._flags[key])

    def flag_keys(self) -> list[str]:
        return list(self._flags)

    async def set_flag(self, key: str, value: Any) -> None:
        self._flags[key] = copy.deepcopy(value)
        self.write_count += 1

    async def unset_flag(self, key: str) -> None:
        self._flags.pop(key, None)
        self.write_count += 1

    @property
    def favorites(self) -> list[FavoriteEntry]:
        return [entry.model_copy() for entry in self._favorites]

    async def update_favorites(self, favorites: list[FavoriteEntry]) -> None:
        self._favorites = [entry.model_copy() for entry in favorites]
        self.write_count += 1

    async def spend_currency(self, amount: int) -> bool:
        if amount > self.gold:
            return False
        self.gold -= amount
        self.write_count += 1
        return True


class InMemoryCompendium(Compendium):
    """Compendium over a fixed set of spells and lists."""

    def __init__(self, spells: Iterable[Spell] = (), spell_lists: Iterable[SpellList] = ()) -> None:
        self._spells: dict[str, Spell] = {spell.uuid: spell for spell in spells}
        self._lists: list[SpellList] = list(spell_lists)
        self.fetch_count = 0

    def add_spell(self, spell: Spell) -> Spell:
        self._spells[spell.uuid] = spell
        return spell

    def add_spell_list(self, spell_list: SpellList) -> SpellList:
        self._lists.append(spell_list)
        return spell_list

    async def get_spell(self, identity: str) -> Spell | None:
        self.fetch_count += 1
        spell = self._spells.get(identity)
        return spell.model_copy(deep=True) if spell else None

    async def find_by_name(self, name: str) -> Spell | None:
        lowered = name.strip().lower()
        for spell in self._spells.values():
            if spell.name.lower() == lowered:
                return spell.model_copy(deep=True)
        return None

    async def get_spell_lists(self) -> list[SpellList]:
        return [spell_list.model_copy(deep=True) for spell_list in self._lists]


class InMemoryUserDataStore(UserDataStore):
    """User journal pages held in a dict keyed by user id."""

    def __init__(self) -> None:
        self._pages: dict[str, dict[str, Any]] = {}

    async def read_page(self, user_id: str) -> dict[str, Any]:
        return copy.deepcopy(self._pages.get(user_id, {}))

    async def write_page(self, user_id: str, data: dict[str, Any]) -> None:
        self._pages[user_id] = copy.deepcopy(data)


class RecordingNotifications(Notifications):
    """Notifications sink that keeps every message for inspection."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []
        self.gm_reports: list[dict[str, Any]] = []

    def info(self, message: str) -> None:
        self.messages.append(("info", message))

    def warn(self, message: str) -> None:
        self.messages.append(("warn", message))

    def error(self, message: str) -> None:
        self.messages.append(("error", message))

    async def whisper_gm(self, record: dict[str, Any]) -> None:
        self.gm_reports.append(record)

    def of_level(self, level: str) -> list[str]:
        return [message for kind, message in self.messages if kind == level]


__all__ = [
    "InMemoryActor",
    "InMemoryCompendium",
    "InMemoryUserDataStore",
    "RecordingNotifications",
]
