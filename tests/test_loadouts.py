"""Tests for spell loadouts."""

import pytest

from spell_state.constants import Flags
from spell_state.game_config import GameConfig
from spell_state.loadouts import LoadoutManager
from spell_state.memory import RecordingNotifications
from spell_state.models import OrganizedSpell, Spell, SpellLevel
from spell_state.organizer import SpellOrganizer

from factories import make_actor, make_cleric, organized

pytestmark = pytest.mark.anyio


# ─── Helpers ─────────────────────────────────────────────────────────


def cleric_tab(spells: dict[str, Spell]) -> list[SpellLevel]:
    entries = organized([spells[name] for name in ("Light", "Bless", "Cure Wounds", "Guiding Bolt")], "cleric")
    by_name: dict[str, OrganizedSpell] = {entry.name: entry for entry in entries}
    by_name["Bless"].preparation.prepared = True
    by_name["Cure Wounds"].preparation.prepared = True
    by_name["Cure Wounds"].preparation.disabled = True
    return SpellOrganizer(GameConfig.load_default()).group_by_level(entries)


@pytest.fixture
def notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture
def manager(spells: dict[str, Spell], notifications: RecordingNotifications) -> LoadoutManager:
    tab = cleric_tab(spells)
    return LoadoutManager(make_actor(make_cleric()), lambda class_identifier: tab, notifications)


class TestStorage:
    async def test_save_and_list(self, manager: LoadoutManager) -> None:
        morning = await manager.save_loadout(" Morning ", "Before the dungeon", ["a", "b"], "cleric")
        anywhere = await manager.save_loadout("Anywhere", "", ["c"])
        assert morning.name == "Morning"
        assert morning.created_at == morning.updated_at > 0

        assert {loadout.name for loadout in manager.get_available_loadouts("cleric")} == {"Morning", "Anywhere"}
        assert [loadout.name for loadout in manager.get_available_loadouts("wizard")] == ["Anywhere"]

        stored = manager.actor.get_flag(Flags.SPELL_LOADOUTS)[morning.id]
        assert stored["spellConfiguration"] == ["a", "b"]
        assert stored["classIdentifier"] == "cleric"
        assert manager.load_loadout(anywhere.id).spell_configuration == ["c"]

    async def test_blank_name_is_rejected(
        self, manager: LoadoutManager, notifications: RecordingNotifications
    ) -> None:
        assert await manager.save_loadout("   ", "", []) is None
        assert notifications.of_level("error") == ["Could not save loadout '   ': Loadout name is required"]
        assert manager.actor.get_flag(Flags.SPELL_LOADOUTS) is None

    async def test_delete(self, manager: LoadoutManager, notifications: RecordingNotifications) -> None:
        loadout = await manager.save_loadout("Morning", "", ["a"], "cleric")
        assert await manager.delete_loadout(loadout.id) is True
        assert manager.get_available_loadouts() == []
        assert await manager.delete_loadout(loadout.id) is False
        assert len(notifications.of_level("error")) == 1

    async def test_list_is_cached_until_a_write(self, manager: LoadoutManager) -> None:
        await manager.save_loadout("Morning", "", [], "cleric")
        assert len(manager.get_available_loadouts()) == 1
        await manager.actor.set_flag(Flags.SPELL_LOADOUTS, {})
        assert len(manager.get_available_loadouts()) == 1
        await manager.save_loadout("Evening", "", [], "cleric")
        assert [loadout.name for loadout in manager.get_available_loadouts()] == ["Evening"]

    async def test_malformed_entries_are_skipped(self, manager: LoadoutManager) -> None:
        await manager.actor.set_flag(
            Flags.SPELL_LOADOUTS, {"bad": {"name": ""}, "good": {"id": "good", "name": "Good"}}
        )
        assert [loadout.id for loadout in manager.get_available_loadouts()] == ["good"]


class TestTabInteraction:
    def test_capture_skips_disabled(self, manager: LoadoutManager, spells: dict[str, Spell]) -> None:
        assert manager.capture_current_state("cleric") == [spells["Bless"].uuid]

    def test_capture_without_tab(self) -> None:
        assert LoadoutManager(make_actor(make_cleric())).capture_current_state("cleric") == []

    async def test_apply(self, manager: LoadoutManager, spells: dict[str, Spell]) -> None:
        loadout = await manager.save_loadout(
            "Healer", "", [spells["Guiding Bolt"].uuid, spells["Light"].uuid], "cleric"
        )
        choices = manager.apply_loadout(loadout.id, "cleric")
        by_name = {choice.name: choice for choice in choices.values()}
        assert set(by_name) == {"Light", "Bless", "Cure Wounds", "Guiding Bolt"}
        assert (by_name["Bless"].was_prepared, by_name["Bless"].is_prepared) == (True, False)
        assert by_name["Guiding Bolt"].is_prepared is True
        assert by_name["Light"].spell_level == 0
        assert by_name["Cure Wounds"].is_prepared is True
        assert f"cleric:{spells['Bless'].uuid}" in choices

    def test_apply_unknown(self, manager: LoadoutManager, notifications: RecordingNotifications) -> None:
        assert manager.apply_loadout("missing", "cleric") is None
        assert notifications.of_level("error") == ["Could not apply loadout missing: Loadout not found"]
