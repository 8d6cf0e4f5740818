"""
Interfaces the host application implements for the spell state engine.

The engine never talks to storage directly: every read and write goes
through an ``Actor``, a ``Compendium``, a ``UserDataStore`` or the
``Notifications`` sink. Flag reads are synchronous (the host keeps them in
memory); writes and document fetches are awaited.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Iterable

from .models import ClassItem, FavoriteEntry, HostItem, ScrollItem, SpellList, Spell


class Actor(ABC):
    """
    A character whose spell state is managed.

    Attributes:
        id: Stable actor identifier
        name: Display name used in GM reports
        owner_user_id: User whose journal page holds this actor's notes and favorites
    """

    def __init__(self, id: str, name: str, owner_user_id: str = "gm") -> None:
        self.id = id
        self.name = name
        self.owner_user_id = owner_user_id

    # ------------------------------------------------------------------ #
    # Items
    # ------------------------------------------------------------------ #

    @property
    @abstractmethod
    def items(self) -> list[HostItem]:
        """All embedded items in insertion order."""
        pass

    @abstractmethod
    async def create_spells(self, spells: Iterable[Spell]) -> list[Spell]:
        """Embed copies of the given spells; returns the created owned items."""
        pass

    @abstractmethod
    async def update_spells(self, updates: list[dict[str, Any]]) -> None:
        """Apply partial updates; each dict carries ``id`` plus changed fields."""
        pass

    @abstractmethod
    async def delete_items(self, ids: Iterable[str]) -> None:
        """Delete embedded items by id."""
        pass

    @property
    def level(self) -> int:
        """Total character level across class items."""
        return sum(item.levels for item in self.class_items())

    def class_items(self) -> list[ClassItem]:
        return [item for item in self.items if isinstance(item, ClassItem) and item.type == "class"]

    def spells(self) -> list[Spell]:
        return [item for item in self.items if isinstance(item, Spell)]

    def scrolls(self) -> list[ScrollItem]:
        return [item for item in self.items if isinstance(item, ScrollItem)]

    def get_item(self, item_id: str) -> HostItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    # ------------------------------------------------------------------ #
    # Flags
    # ------------------------------------------------------------------ #

    @abstractmethod
    def get_flag(self, key: str, default: Any = None) -> Any:
        """Read a module flag. Returned values are copies."""
        pass

    @abstractmethod
    def flag_keys(self) -> list[str]:
        """Names of every module flag currently set."""
        pass

    @abstractmethod
    async def set_flag(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    async def unset_flag(self, key: str) -> None:
        pass

    # ------------------------------------------------------------------ #
    # Favorites and currency
    # ------------------------------------------------------------------ #

    @property
    @abstractmethod
    def favorites(self) -> list[FavoriteEntry]:
        """The actor's native favorites list."""
        pass

    @abstractmethod
    async def update_favorites(self, favorites: list[FavoriteEntry]) -> None:
        pass

    @abstractmethod
    async def spend_currency(self, amount: int) -> bool:
        """Deduct ``amount`` gold; ``False`` when the actor cannot afford it."""
        pass


class Compendium(ABC):
    """Read access to spell documents and spell list pages."""

    @abstractmethod
    async def get_spell(self, identity: str) -> Spell | None:
        """Resolve one spell by uuid; ``None`` when it cannot be found."""
        pass

    async def get_spells(self, identities: Iterable[str]) -> list[Spell | None]:
        """Resolve several spells, preserving order."""
        return list(await asyncio.gather(*(self.get_spell(identity) for identity in identities)))

    @abstractmethod
    async def find_by_name(self, name: str) -> Spell | None:
        """Look a spell up by exact name (case-insensitive)."""
        pass

    @abstractmethod
    async def get_spell_lists(self) -> list[SpellList]:
        """Index of every spell list page across enabled packs."""
        pass

    async def get_spell_list(self, list_id: str) -> SpellList | None:
        for spell_list in await self.get_spell_lists():
            if spell_list.uuid == list_id:
                return spell_list
        return None


class UserDataStore(ABC):
    """Per-user journal pages holding notes, favorites and usage stats."""

    @abstractmethod
    async def read_page(self, user_id: str) -> dict[str, Any]:
        """Return the user's page data (empty dict when absent)."""
        pass

    @abstractmethod
    async def write_page(self, user_id: str, data: dict[str, Any]) -> None:
        pass


class Notifications(ABC):
    """Toast sink for user-initiated actions."""

    @abstractmethod
    def info(self, message: str) -> None:
        pass

    @abstractmethod
    def warn(self, message: str) -> None:
        pass

    @abstractmethod
    def error(self, message: str) -> None:
        pass

    @abstractmethod
    async def whisper_gm(self, record: dict[str, Any]) -> None:
        """Deliver a structured report to the GM."""
        pass


__all__ = ["Actor", "Compendium", "UserDataStore", "Notifications"]
