"""
Canonical spell identity.

Owned items, compendium documents and journal user data must agree on a
single identifier, otherwise deduplication and user-data lookups break.
Every cache key in the engine goes through ``canonical_identity``.
"""

from __future__ import annotations

from .models import Spell


def canonical_identity(spell: Spell | str) -> str:
    """Return the preferred stable identifier for a spell.

    An owned spell resolves to its compendium source, then its legacy
    source-id flag, then its own uuid. Strings are returned unchanged.
    """
    if isinstance(spell, str):
        return spell
    return spell.compendium_source or spell.source_id or spell.uuid


def matches_identity(spell: Spell, identity: str) -> bool:
    """True when any of the spell's references equals ``identity``."""
    return identity in (spell.compendium_source, spell.source_id, spell.uuid, spell.id)


def class_spell_key(class_identifier: str, identity: str) -> str:
    """Key stored in ``preparedSpellsByClass``: ``<class>:<identity>``."""
    return f"{class_identifier}:{identity}"


def parse_class_spell_key(key: str) -> tuple[str, str]:
    """Split a class spell key at the first colon only."""
    class_identifier, _, identity = key.partition(":")
    return class_identifier, identity


__all__ = [
    "canonical_identity",
    "matches_identity",
    "class_spell_key",
    "parse_class_spell_key",
]
