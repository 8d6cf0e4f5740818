"""
Spell list resolution and spell document loading.

``SpellListResolver`` turns a spellcasting class into the set of spell
identities it may pick from; ``SpellLoader`` fetches the matching
documents up to a spell level cap, consulting an optional preload cache
before going to the compendium.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field

from .exceptions import SpellLoadError
from .host import Actor, Compendium
from .models import SpellcastingClass, Spell, SpellList
from .rules import RuleResolver
from .settings import SpellStateSettings

logger = logging.getLogger(__name__)

PRELOAD_CACHE_VERSION = "1"


def source_package(compendium_source: str | None) -> str | None:
    """Package that shipped a compendium document.

    ``Compendium.dnd5e.classes.Item.abc`` -> ``dnd5e``.
    """
    if not compendium_source or not compendium_source.startswith("Compendium."):
        return None
    parts = compendium_source.split(".")
    return parts[1].lower() if len(parts) > 1 else None


@dataclass
class PreloadCache:
    """
    Pre-enriched spell documents and spell list index shared across loads.

    Attributes:
        version: Format version; a cache whose version differs from the
            loader's expected version is ignored
        created_at: Unix timestamp of creation
        documents: Spell documents keyed by uuid
        spell_lists: Spell list index captured with the documents
    """
    version: str = PRELOAD_CACHE_VERSION
    created_at: float = field(default_factory=time.time)
    documents: dict[str, Spell] = field(default_factory=dict)
    spell_lists: list[SpellList] = field(default_factory=list)

    def is_valid(self, expected_version: str = PRELOAD_CACHE_VERSION) -> bool:
        return self.version == expected_version

    def get(self, uuid: str) -> Spell | None:
        spell = self.documents.get(uuid)
        return spell.model_copy(deep=True) if spell else None

    def put(self, spells: list[Spell]) -> None:
        for spell in spells:
            self.documents[spell.uuid] = spell

    def invalidate(self) -> None:
        self.documents.clear()
        self.spell_lists.clear()
        self.created_at = time.time()

    @classmethod
    async def build(cls, compendium: Compendium, identities: list[str] | None = None) -> "PreloadCache":
        """Snapshot the spell list index and (optionally) a set of documents."""
        cache = cls(spell_lists=await compendium.get_spell_lists())
        if identities:
            cache.put([spell for spell in await compendium.get_spells(identities) if spell is not None])
        logger.debug(f"Preload cache built with {len(cache.documents)} spells and {len(cache.spell_lists)} lists")
        return cache


class SpellListResolver:
    """Finds the spell list (or lists) a class draws from."""

    def __init__(
        self,
        compendium: Compendium,
        rules: RuleResolver,
        settings: SpellStateSettings,
        preload: PreloadCache | None = None,
    ) -> None:
        self.compendium = compendium
        self.rules = rules
        self.settings = settings
        self.preload = preload

    async def _all_lists(self) -> list[SpellList]:
        if self.preload is not None and self.preload.is_valid() and self.preload.spell_lists:
            return list(self.preload.spell_lists)
        return await self.compendium.get_spell_lists()

    async def _mapped(self, spell_list: SpellList, lists_by_id: dict[str, SpellList]) -> SpellList:
        """Apply a custom list mapping to an original list."""
        replacement_id = self.settings.custom_spell_mappings.get(spell_list.uuid)
        if not replacement_id:
            return spell_list
        replacement = lists_by_id.get(replacement_id) or await self.compendium.get_spell_list(replacement_id)
        if replacement is None:
            logger.warning(f"Custom mapping {spell_list.uuid} -> {replacement_id} points at a missing list")
            return spell_list
        return replacement

    async def get_class_spell_list(self, actor: Actor, spellcasting_class: SpellcastingClass) -> set[str]:
        """Spell identities available to a class.

        A custom list in the class rules replaces automatic discovery;
        subclass lists are merged in either way.

        Raises:
            SpellLoadError: If the compendium index cannot be read
        """
        identifier = spellcasting_class.identifier
        rules = self.rules.get_class_rules(actor, identifier)
        try:
            all_lists = await self._all_lists()
        except Exception as e:
            logger.error(f"Failed to read spell list index for {identifier}: {e}")
            raise SpellLoadError(f"Cannot read spell lists: {e}", class_identifier=identifier) from e
        lists_by_id = {spell_list.uuid: spell_list for spell_list in all_lists}
        spells: set[str] = set()

        if rules.custom_spell_list:
            for list_id in rules.custom_spell_list:
                custom = lists_by_id.get(list_id) or await self.compendium.get_spell_list(list_id)
                if custom is None:
                    logger.warning(f"Custom spell list {list_id} for {identifier} not found")
                    continue
                spells |= custom.spells
            logger.debug(f"Using {len(rules.custom_spell_list)} custom list(s) for {identifier}: {len(spells)} spells")

        if not spells:
            class_list = await self._find_class_list(spellcasting_class, all_lists, lists_by_id)
            if class_list is not None:
                spells |= class_list.spells

        subclass = spellcasting_class.class_item.subclass
        if subclass is not None:
            for spell_list in self._visible(all_lists):
                if spell_list.type == "subclass" and spell_list.identifier.lower() == subclass.class_identifier:
                    spells |= (await self._mapped(spell_list, lists_by_id)).spells

        if not spells:
            logger.warning(f"No spell list found for {spellcasting_class.name} ({identifier})")
        return spells

    def _visible(self, lists: list[SpellList]) -> list[SpellList]:
        hidden = set(self.settings.hidden_spell_lists)
        return [spell_list for spell_list in lists if spell_list.uuid not in hidden]

    async def _find_class_list(
        self,
        spellcasting_class: SpellcastingClass,
        all_lists: list[SpellList],
        lists_by_id: dict[str, SpellList],
    ) -> SpellList | None:
        identifier = spellcasting_class.identifier
        candidates = [
            spell_list
            for spell_list in self._visible(all_lists)
            if spell_list.type == "class" and spell_list.identifier.lower() == identifier
        ]
        package = source_package(spellcasting_class.class_item.compendium_source)
        if package:
            # Lists shipped with the class's own package come first
            candidates.sort(key=lambda spell_list: not spell_list.pack.lower().startswith(package))
        for candidate in candidates:
            mapped = await self._mapped(candidate, lists_by_id)
            if mapped.spells:
                return mapped
        return None


class SpellLoader:
    """Fetches spell documents for a class, honoring a level cap."""

    def __init__(
        self,
        compendium: Compendium,
        resolver: SpellListResolver,
        preload: PreloadCache | None = None,
    ) -> None:
        self.compendium = compendium
        self.resolver = resolver
        self.preload = preload

    async def load_documents(self, identities: list[str] | set[str], max_level: int | None = None) -> list[Spell]:
        """Exactly one document per resolvable identity, in identity order.

        Identities that cannot be resolved are dropped with a warning.
        Documents above ``max_level`` are dropped silently.

        Raises:
            SpellLoadError: If the compendium fails outright
        """
        ordered = sorted(set(identities))
        found: dict[str, Spell] = {}
        use_preload = self.preload is not None and self.preload.is_valid()
        if self.preload is not None and not use_preload:
            logger.debug(f"Ignoring preload cache version {self.preload.version}")

        missing = []
        for identity in ordered:
            cached = self.preload.get(identity) if use_preload else None
            if cached is not None:
                found[identity] = cached
            else:
                missing.append(identity)

        if missing:
            try:
                fetched = await self.compendium.get_spells(missing)
            except Exception as e:
                logger.error(f"Failed to fetch {len(missing)} spell documents: {e}")
                raise SpellLoadError(f"Cannot fetch spell documents: {e}") from e
            for identity, spell in zip(missing, fetched):
                if spell is None:
                    logger.warning(f"Spell {identity} could not be loaded")
                    continue
                found[identity] = spell
            if use_preload:
                self.preload.put([found[identity] for identity in missing if identity in found])

        results = []
        for identity in ordered:
            spell = found.get(identity)
            if spell is None:
                continue
            if max_level is not None and spell.level > max_level:
                continue
            results.append(spell)
        return results

    async def load_for_class(
        self,
        actor: Actor,
        spellcasting_class: SpellcastingClass,
        max_spell_level: int,
    ) -> list[Spell]:
        """Spell documents from a class's list up to ``max_spell_level``.

        Returns an empty list when the class has no resolvable list.
        """
        identities = await self.resolver.get_class_spell_list(actor, spellcasting_class)
        if not identities:
            return []
        spells = await self.load_documents(identities, max_spell_level)
        logger.debug(
            f"Loaded {len(spells)}/{len(identities)} spells for {spellcasting_class.identifier} "
            f"(max level {max_spell_level})"
        )
        return spells


__all__ = ["PreloadCache", "SpellListResolver", "SpellLoader", "PRELOAD_CACHE_VERSION", "source_package"]
