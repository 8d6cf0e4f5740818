"""
The spellbook state facade.

``SpellbookState`` owns one actor's spell state for an open spellbook: it
detects spellcasting classes, loads and organises their spells into tab
data, exposes the active class view, and runs the save pipeline
(preparation writes, ritual reconciliation, favorites, GM reports and
post-rest bookkeeping). Load and refresh paths never raise to the
caller; failures are logged and leave well-formed empty data behind.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from .cantrips import CantripManager
from .constants import EnforcementBehavior, Flags
from .detector import ClassDetector, calculate_max_spell_level
from .exceptions import SpellStateError
from .favorites import FavoritesSync
from .game_config import GameConfig
from .host import Actor, Compendium, Notifications, UserDataStore
from .loader import PreloadCache, SpellListResolver, SpellLoader
from .loadouts import LoadoutManager
from .models import (
    ChangeSet,
    ClassChange,
    ClassSpellData,
    GMNotification,
    LimitState,
    OrganizedSpell,
    OverLimits,
    PreparationStats,
    SpellChoice,
    SpellcastingClass,
    SpellLevel,
    TabEntry,
)
from .organizer import SpellOrganizer
from .preparation import PreparationSnapshot, PreparationStatsCalculator
from .rituals import RitualReconciler
from .rules import RuleResolver
from .search import FieldDefinitions, SearchEngine
from .settings import SpellStateSettings
from .spell_manager import SpellManager
from .user_data import UserDataService
from .wizard import ScrollScanner, WizardSpellbook, WizardTabBuilder, prep_tab_id, wizard_tab_id

logger = logging.getLogger("spell-state")


class SpellbookState:
    """Spell state for one actor.

    Args:
        actor: Character whose spells are managed
        compendium: Spell documents and spell lists
        settings: Module-wide settings
        user_data_store: Journal pages for notes, favorites and usage
        notifications: Toast and GM whisper sink
        game_config: Static game enumerations
        preload: Pre-enriched documents and spell lists
        user_id: User whose journal data is overlaid; the actor's owner by default
    """

    def __init__(
        self,
        actor: Actor,
        compendium: Compendium,
        settings: SpellStateSettings | None = None,
        user_data_store: UserDataStore | None = None,
        notifications: Notifications | None = None,
        game_config: GameConfig | None = None,
        preload: PreloadCache | None = None,
        user_id: str | None = None,
    ) -> None:
        self.actor = actor
        self.compendium = compendium
        self.settings = settings or SpellStateSettings()
        self.notifications = notifications
        self.game_config = game_config or GameConfig.load_default()
        self.user_id = user_id or actor.owner_user_id

        self.rules = RuleResolver(self.settings)
        self.detector = ClassDetector(self.rules)
        self.resolver = SpellListResolver(compendium, self.rules, self.settings, preload)
        self.loader = SpellLoader(compendium, self.resolver, preload)
        self.user_data = UserDataService(user_data_store, self.settings) if user_data_store else None
        self.organizer = SpellOrganizer(self.game_config, self.user_data, self.user_id, actor.id)
        self.stats = PreparationStatsCalculator()
        self.cantrips = CantripManager(actor, self.rules, self.settings, self.detector, notifications)
        self.spell_manager = SpellManager(actor, compendium, self.rules, self.settings, self.detector, notifications)
        self.rituals = RitualReconciler(self.rules, self.resolver, self.loader, self.detector)
        self.favorites = FavoritesSync(self.user_data, compendium) if self.user_data else None
        self.loadouts = LoadoutManager(actor, self.get_tab_spell_levels, notifications)
        self.scroll_scanner = ScrollScanner(actor, compendium, self.settings)
        self.wizard_builder = WizardTabBuilder(
            self.resolver, self.loader, self.organizer, self.stats, self.rules, self.settings
        )
        self.search = SearchEngine(actor, self.get_current_spells, self.settings, FieldDefinitions(self.game_config))

        self.spellcasting_classes: dict[str, SpellcastingClass] = {}
        self.wizard_books: dict[str, WizardSpellbook] = {}
        self.class_spell_data: dict[str, ClassSpellData] = {}
        self.tab_data: dict[str, TabEntry] = {}
        self.active_class: str | None = None
        self.class_name = ""
        self.spell_levels: list[SpellLevel] = []
        self.spell_preparation = PreparationStats()
        self.global_preparation = PreparationStats()
        self.is_long_rest = False
        self._initialized = False
        self._refresh_locks: dict[str, asyncio.Lock] = {}

    @property
    def initialized(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def initialize(self) -> bool:
        """Detect classes and build every tab. Safe to call repeatedly.

        Returns:
            False when initialization failed; the state is then empty
        """
        if self._initialized:
            return True
        try:
            self.is_long_rest = bool(self.actor.get_flag(Flags.LONG_REST_COMPLETED))
            await self.detect_spellcasting_classes()
            await self.spell_manager.cleanup_stale_preparation_flags()
            await self.load_spell_data()
        except Exception as e:
            logger.error(f"Spellbook initialization failed for {self.actor.name}: {e}")
            self.class_spell_data.clear()
            self.tab_data.clear()
            return False

        for identifier in self.wizard_books:
            if wizard_tab_id(identifier) not in self.tab_data:
                logger.error(f"Missing wizard tab data for {identifier} after initialization")
        if self.active_class in self.class_spell_data:
            self.set_active_class(self.active_class)
        elif self.class_spell_data:
            self.set_active_class(next(iter(self.class_spell_data)))
        self.update_global_preparation_count()
        self._initialized = True
        logger.info(
            f"Spellbook ready for {self.actor.name}: {len(self.class_spell_data)} classes, {len(self.tab_data)} tabs"
        )
        return True

    async def detect_spellcasting_classes(self) -> list[SpellcastingClass]:
        """Detect classes, prune data for removed ones and seed rule records."""
        classes = self.detector.detect(self.actor)
        identifiers = [spellcasting_class.identifier for spellcasting_class in classes]
        await self.detector.cleanup_stale(self.actor, identifiers)
        await self.rules.initialize_new_classes(self.actor, identifiers)
        self.spellcasting_classes = {spellcasting_class.identifier: spellcasting_class for spellcasting_class in classes}
        wizard_ids = self.detector.wizard_classes(self.actor, classes)
        self.wizard_books = {
            identifier: self.wizard_books.get(identifier)
            or WizardSpellbook(self.actor, identifier, self.rules, self.settings, self.notifications)
            for identifier in wizard_ids
        }
        for stale in [identifier for identifier in self.class_spell_data if identifier not in self.spellcasting_classes]:
            del self.class_spell_data[stale]
        for tab_id in list(self.tab_data):
            if not any(tab_id in (prep_tab_id(i), wizard_tab_id(i)) for i in self.spellcasting_classes):
                del self.tab_data[tab_id]
        self.invalidate_caches()
        return classes

    def invalidate_caches(self) -> None:
        self.stats.clear()
        self.cantrips.clear_cache()
        for book in self.wizard_books.values():
            book.invalidate_cache()

    def _snapshot(self) -> PreparationSnapshot:
        return PreparationSnapshot.from_actor(
            self.actor,
            behavior=self.rules.get_enforcement_behavior(self.actor),
            sources={
                identifier: spellcasting_class.source_item
                for identifier, spellcasting_class in self.spellcasting_classes.items()
            },
            cantrip_max={identifier: self.cantrips.get_max_cantrips(identifier) for identifier in self.spellcasting_classes},
        )

    async def load_spell_data(self) -> None:
        """Load regular classes in order, then wizard classes concurrently."""
        snapshot = self._snapshot()
        wizard_loads = []
        for identifier, spellcasting_class in self.spellcasting_classes.items():
            if identifier in self.wizard_books:
                wizard_loads.append(self.load_wizard_spell_data(spellcasting_class, snapshot))
            else:
                await self.load_class_spell_data(spellcasting_class, snapshot)
        if wizard_loads:
            await asyncio.gather(*wizard_loads)

    async def load_class_spell_data(
        self, spellcasting_class: SpellcastingClass, snapshot: PreparationSnapshot | None = None
    ) -> ClassSpellData:
        identifier = spellcasting_class.identifier
        snapshot = snapshot or self._snapshot()
        rules = self.rules.get_class_rules(self.actor, identifier)
        max_level = calculate_max_spell_level(spellcasting_class)
        try:
            documents = await self.loader.load_for_class(self.actor, spellcasting_class, max_level)
        except SpellStateError as e:
            logger.warning(f"Spell list for {identifier} could not be loaded: {e.message}")
            documents = []
        await self.organizer.prefetch_user_data(documents, snapshot.owned)
        levels = self.organizer.organize(documents, identifier, snapshot, rules.show_cantrips)
        preparation = self.stats.compute(
            identifier,
            levels,
            spellcasting_class.config.preparation_max,
            rules.spell_preparation_bonus,
            spellcasting_class.levels,
        )
        data = ClassSpellData(
            identifier=identifier,
            class_name=spellcasting_class.name,
            class_item=spellcasting_class.class_item,
            spell_levels=levels,
            spell_preparation=preparation,
        )
        self.class_spell_data[identifier] = data
        self.tab_data[prep_tab_id(identifier)] = TabEntry(spell_levels=levels, spell_preparation=preparation)
        logger.debug(f"Loaded {identifier}: {sum(len(level.spells) for level in levels)} spells, {preparation}")
        return data

    async def load_wizard_spell_data(
        self, spellcasting_class: SpellcastingClass, snapshot: PreparationSnapshot | None = None
    ) -> ClassSpellData:
        identifier = spellcasting_class.identifier
        snapshot = snapshot or self._snapshot()
        book = self.wizard_books.get(identifier)
        if book is None:
            logger.warning(f"No spellbook for wizard class {identifier} on {self.actor.name}")
            return await self.load_class_spell_data(spellcasting_class, snapshot)
        await book.ensure_flags()
        scroll_spells = await self.scroll_scanner.scan(calculate_max_spell_level(spellcasting_class))
        try:
            data = await self.wizard_builder.build(self.actor, spellcasting_class, book, snapshot, scroll_spells)
        except SpellStateError as e:
            logger.warning(f"Wizard tabs for {identifier} could not be built: {e.message}")
            data = ClassSpellData(
                identifier=identifier,
                class_name=spellcasting_class.name,
                class_item=spellcasting_class.class_item,
                tab_data={prep_tab_id(identifier): TabEntry(), wizard_tab_id(identifier): TabEntry()},
            )
        self.class_spell_data[identifier] = data
        self.tab_data.update(data.tab_data or {})
        return data

    async def refresh_class_spell_data(self, class_identifier: str) -> ClassSpellData | None:
        """Reload one class; concurrent calls for the same class run one at a time."""
        lock = self._refresh_locks.setdefault(class_identifier, asyncio.Lock())
        async with lock:
            spellcasting_class = self.spellcasting_classes.get(class_identifier)
            if spellcasting_class is None:
                logger.warning(f"Cannot refresh unknown class {class_identifier} on {self.actor.name}")
                return None
            self.invalidate_caches()
            try:
                if class_identifier in self.wizard_books:
                    data = await self.load_wizard_spell_data(spellcasting_class)
                else:
                    data = await self.load_class_spell_data(spellcasting_class)
            except Exception as e:
                logger.error(f"Refreshing {class_identifier} failed for {self.actor.name}: {e}")
                return None
            if self.active_class == class_identifier:
                self.set_active_class(class_identifier)
            self.update_global_preparation_count()
            return data

    # ------------------------------------------------------------------ #
    # Views
    # ------------------------------------------------------------------ #

    def set_active_class(self, class_identifier: str) -> bool:
        data = self.class_spell_data.get(class_identifier)
        if data is None:
            logger.warning(f"Attempted to activate unknown class {class_identifier}")
            return False
        self.active_class = class_identifier
        self.class_name = data.class_name
        self.spell_levels = data.spell_levels
        self.spell_preparation = data.spell_preparation
        return True

    def get_current_spell_list(self) -> list[SpellLevel]:
        if not self.active_class or self.active_class not in self.class_spell_data:
            return []
        return self.class_spell_data[self.active_class].spell_levels

    def get_current_spells(self) -> list[OrganizedSpell]:
        """The active class's spells as one flat list (search input)."""
        return [entry for level in self.get_current_spell_list() for entry in level.spells]

    def get_tab_spell_levels(self, class_identifier: str) -> list[SpellLevel]:
        data = self.class_spell_data.get(class_identifier)
        return data.spell_levels if data else []

    def update_global_preparation_count(self) -> PreparationStats:
        """Sum of per-class preparation stats."""
        total = PreparationStats(
            current=sum(data.spell_preparation.current for data in self.class_spell_data.values()),
            maximum=sum(data.spell_preparation.maximum for data in self.class_spell_data.values()),
        )
        if self.class_spell_data and total.maximum <= 0:
            logger.warning(f"Global preparation maximum is {total.maximum} for {self.actor.name}")
        self.global_preparation = total
        return total

    def update_wizard_book(self, class_identifier: str, is_free: bool) -> None:
        """Adjust spellbook counters after learning a spell without a reload."""
        tab = self.tab_data.get(wizard_tab_id(class_identifier))
        if tab is None:
            return
        tab.wizard_total_spellbook_count = (tab.wizard_total_spellbook_count or 0) + 1
        if is_free:
            tab.wizard_remaining_free_spells = max(0, (tab.wizard_remaining_free_spells or 0) - 1)
            tab.wizard_has_free_spells = tab.wizard_remaining_free_spells > 0

    async def refresh_spell_enhancements(self) -> None:
        """Re-read notes, favorites and usage without reloading documents."""
        if self.user_data is None:
            return
        self.user_data.invalidate(self.user_id)
        entries = self._all_entries()
        identities = {entry.uuid for entry in entries} | {entry.spell.uuid for entry in entries}
        await self.user_data.prefetch(identities, self.user_id, self.actor.id)
        for entry in entries:
            self.user_data.enhance_spell(entry, self.user_id, self.actor.id)
        logger.debug(f"Refreshed user data on {len(entries)} entries for {self.actor.name}")

    def _all_entries(self) -> list[OrganizedSpell]:
        seen: dict[int, OrganizedSpell] = {}
        levels = [level for data in self.class_spell_data.values() for level in data.spell_levels]
        levels += [level for tab in self.tab_data.values() for level in tab.spell_levels]
        for level in levels:
            for entry in level.spells:
                seen[id(entry)] = entry
        return list(seen.values())

    # ------------------------------------------------------------------ #
    # Wizard actions
    # ------------------------------------------------------------------ #

    async def learn_spell(self, class_identifier: str, identity: str) -> bool:
        """Copy a spell into a wizard's spellbook and refresh the class.

        Host failures are logged and reported with a toast.
        """
        book = self.wizard_books.get(class_identifier)
        if book is None:
            logger.warning(f"{class_identifier} does not keep a spellbook on {self.actor.name}")
            return False
        try:
            spell = await self.compendium.get_spell(identity)
            if spell is None:
                if self.notifications:
                    self.notifications.error(f"Spell {identity} could not be found")
                return False
            _, is_free = book.get_copying_cost(spell)
            if not await book.copy_spell(spell):
                return False
        except Exception as e:
            logger.error(f"Learning {identity} failed for {self.actor.name} ({class_identifier}): {e}")
            if self.notifications:
                self.notifications.error(f"Could not add {identity} to the spellbook")
            return False
        self.update_wizard_book(class_identifier, is_free)
        await self.refresh_class_spell_data(class_identifier)
        return True

    async def learn_from_scroll(self, class_identifier: str, scroll_id: str) -> bool:
        book = self.wizard_books.get(class_identifier)
        spellcasting_class = self.spellcasting_classes.get(class_identifier)
        if book is None or spellcasting_class is None:
            return False
        try:
            scrolls = await self.scroll_scanner.scan(calculate_max_spell_level(spellcasting_class))
            scroll_spell = next((found for found in scrolls if found.scroll.id == scroll_id), None)
            if scroll_spell is None:
                logger.warning(f"Scroll {scroll_id} not found on {self.actor.name}")
                return False
            learned = await self.scroll_scanner.learn_from_scroll(scroll_spell, book)
        except Exception as e:
            logger.error(f"Learning from scroll {scroll_id} failed for {self.actor.name}: {e}")
            if self.notifications:
                self.notifications.error(f"Could not learn from scroll {scroll_id}")
            await self.refresh_class_spell_data(class_identifier)
            return False
        if not learned:
            return False
        await self.refresh_class_spell_data(class_identifier)
        return True

    # ------------------------------------------------------------------ #
    # Saving
    # ------------------------------------------------------------------ #

    async def save(self, spell_data_by_class: dict[str, dict[str, SpellChoice]]) -> dict[str, dict[str, ChangeSet]]:
        """Apply a submitted spellbook form.

        Writes each class's preparation, reconciles ritual items, syncs
        favorites, reports to the GM and finishes rest or level-up
        bookkeeping. A failing class is reported with a toast and skipped.

        Returns:
            Change sets keyed by class identifier
        """
        changes_by_class: dict[str, dict[str, ChangeSet]] = {}
        for class_identifier, choices in spell_data_by_class.items():
            try:
                changes_by_class[class_identifier] = await self.spell_manager.save_class_specific_prepared_spells(
                    class_identifier, choices
                )
            except Exception as e:
                logger.error(f"Saving {class_identifier} preparation failed for {self.actor.name}: {e}")
                if self.notifications:
                    self.notifications.error(f"Could not save {class_identifier} spells")

        self.cantrips.clear_cache()
        await self.rituals.reconcile(self.actor, list(self.spellcasting_classes.values()))
        if self.favorites is not None:
            await self.favorites.sync_on_save(
                self.actor,
                [choice.uuid for choices in spell_data_by_class.values() for choice in choices.values()],
                self.user_id,
            )
            await self.favorites.process_favorites_from_form(self.actor, self.user_id)
        await self.send_gm_notifications(spell_data_by_class, changes_by_class)
        await self.handle_post_processing()

        self._initialized = False
        await self.initialize()
        return changes_by_class

    async def handle_post_processing(self) -> None:
        """Finish a cantrip level-up and consume the long rest flag."""
        if self.cantrips.can_be_leveled_up():
            await self.cantrips.complete_cantrips_level_up()
        if self.is_long_rest:
            await self.cantrips.reset_swap_tracking()
            await self.actor.unset_flag(Flags.LONG_REST_COMPLETED)
            self.is_long_rest = False
            logger.debug(f"Long rest swap window closed for {self.actor.name}")

    async def send_gm_notifications(
        self,
        spell_data_by_class: dict[str, dict[str, SpellChoice]],
        all_changes_by_class: dict[str, dict[str, ChangeSet]],
    ) -> GMNotification | None:
        """Whisper a change report to the GM under ``notifyGM`` enforcement.

        Returns:
            The report sent, or None when nothing was sent
        """
        if self.rules.get_enforcement_behavior(self.actor) != EnforcementBehavior.NOTIFY_GM:
            return None
        report = GMNotification(actor_name=self.actor.name)
        for class_identifier, choices in spell_data_by_class.items():
            data = self.class_spell_data.get(class_identifier)
            if data is None:
                continue
            changes = all_changes_by_class.get(class_identifier, {})
            cantrips = sum(1 for choice in choices.values() if choice.is_prepared and choice.spell_level == 0)
            spells = sum(1 for choice in choices.values() if choice.is_prepared and choice.spell_level > 0)
            max_cantrips = self.cantrips.get_max_cantrips(class_identifier)
            max_spells = data.spell_preparation.maximum
            report.class_changes[class_identifier] = ClassChange(
                class_name=data.class_name or class_identifier,
                cantrip_changes=changes.get("cantrip_changes", ChangeSet()),
                spell_changes=changes.get("spell_changes", ChangeSet()),
                over_limits=OverLimits(
                    cantrips=LimitState(is_over=cantrips > max_cantrips, current=cantrips, max=max_cantrips),
                    spells=LimitState(is_over=spells > max_spells, current=spells, max=max_spells),
                ),
            )
        if self.notifications is None or not any(change.has_changes for change in report.class_changes.values()):
            return None
        try:
            await self.notifications.whisper_gm(report.to_flag())
        except Exception as e:
            logger.error(f"Failed to notify the GM about {self.actor.name}: {e}")
            return None
        logger.info(f"Sent GM report for {self.actor.name} covering {len(report.class_changes)} classes")
        return report

    def to_dict(self) -> dict[str, Any]:
        """Tab data as plain JSON values, for hosts that render it."""
        return {tab_id: tab.model_dump(mode="json") for tab_id, tab in self.tab_data.items()}


__all__ = ["SpellbookState"]
