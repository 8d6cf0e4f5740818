"""Tests for saving preparation forms and spell change checks."""

import pytest

from spell_state.constants import Flags
from spell_state.identity import class_spell_key
from spell_state.memory import RecordingNotifications
from spell_state.models import Spell, SpellChoice
from spell_state.rules import RuleResolver
from spell_state.settings import SpellStateSettings
from spell_state.spell_manager import SpellManager

from factories import make_actor, make_class, make_cleric, make_compendium, make_wizard, owned_copy

pytestmark = pytest.mark.anyio


# ─── Helpers ─────────────────────────────────────────────────────────


def manager_for(actor, settings: SpellStateSettings | None = None, notifications=None) -> SpellManager:
    settings = settings or SpellStateSettings()
    return SpellManager(actor, make_compendium(), RuleResolver(settings), settings, notifications=notifications)


def choice(spell: Spell, cls: str, prepared: bool, was: bool = False) -> tuple[str, SpellChoice]:
    key = class_spell_key(cls, spell.uuid)
    return key, SpellChoice(
        uuid=spell.uuid,
        name=spell.name,
        spell_level=spell.level,
        is_prepared=prepared,
        was_prepared=was,
        is_ritual=spell.is_ritual,
        source_class=cls,
    )


def owned_named(actor, name: str) -> list[Spell]:
    return [spell for spell in actor.spells() if spell.name == name]


class TestSave:
    async def test_preparing_creates_owned_copy(self, spells: dict[str, Spell]) -> None:
        actor = make_actor(make_cleric())
        key, bless = choice(spells["Bless"], "cleric", True)
        changes = await manager_for(actor).save_class_specific_prepared_spells("cleric", {key: bless})

        (owned,) = owned_named(actor, "Bless")
        assert (owned.prepared, owned.method, owned.source_class) == (1, "spell", "cleric")
        assert owned.compendium_source == spells["Bless"].uuid
        assert actor.get_flag(Flags.PREPARED_SPELLS_BY_CLASS) == {"cleric": [key]}
        assert actor.get_flag(Flags.PREPARED_SPELLS) == [spells["Bless"].uuid]
        assert changes["spell_changes"].added == ["Bless"]
        assert not changes["cantrip_changes"].has_changes

    async def test_cantrips_are_reported_separately(self, spells: dict[str, Spell]) -> None:
        actor = make_actor(make_cleric())
        key, light = choice(spells["Light"], "cleric", True)
        changes = await manager_for(actor).save_class_specific_prepared_spells("cleric", {key: light})
        assert changes["cantrip_changes"].added == ["Light"]
        assert not changes["spell_changes"].has_changes

    async def test_unpreparing_removes_item(self, spells: dict[str, Spell]) -> None:
        actor = make_actor(make_cleric(), owned_copy(spells["Bless"], source_class="cleric", prepared=1))
        key, bless = choice(spells["Bless"], "cleric", False, was=True)
        changes = await manager_for(actor).save_class_specific_prepared_spells("cleric", {key: bless})
        assert owned_named(actor, "Bless") == []
        assert changes["spell_changes"].removed == ["Bless"]
        assert actor.get_flag(Flags.PREPARED_SPELLS) == []

    async def test_unassigned_copy_is_reused(self, spells: dict[str, Spell]) -> None:
        actor = make_actor(make_cleric(), owned_copy(spells["Bless"], id="loose"))
        key, bless = choice(spells["Bless"], "cleric", True)
        await manager_for(actor).save_class_specific_prepared_spells("cleric", {key: bless})
        (owned,) = owned_named(actor, "Bless")
        assert owned.id == "loose"
        assert (owned.prepared, owned.source_class) == (1, "cleric")

    async def test_always_prepared_copy_is_left_alone(self, spells: dict[str, Spell]) -> None:
        actor = make_actor(make_cleric(), owned_copy(spells["Bless"], source_class="cleric", prepared=2))
        key, bless = choice(spells["Bless"], "cleric", True)
        await manager_for(actor).save_class_specific_prepared_spells("cleric", {key: bless})
        (owned,) = owned_named(actor, "Bless")
        assert owned.prepared == 2

    async def test_pact_class_defaults_to_pact_method(self, spells: dict[str, Spell]) -> None:
        actor = make_actor(make_class("Warlock", progression="pact", spellcasting_type="pact"))
        key, shield = choice(spells["Shield"], "warlock", True)
        await manager_for(actor).save_class_specific_prepared_spells("warlock", {key: shield})
        (owned,) = owned_named(actor, "Shield")
        assert owned.method == "pact"

    async def test_always_ritual_class_gets_ritual_copies(self, spells: dict[str, Spell]) -> None:
        actor = make_actor(make_wizard())
        manager = manager_for(actor)
        detect_key, detect = choice(spells["Detect Magic"], "wizard", True)
        familiar_key, familiar = choice(spells["Find Familiar"], "wizard", False)
        await manager.save_class_specific_prepared_spells("wizard", {detect_key: detect, familiar_key: familiar})

        methods = sorted(spell.method for spell in owned_named(actor, "Detect Magic"))
        assert methods == ["ritual", "spell"]
        (ritual,) = owned_named(actor, "Find Familiar")
        assert ritual.method == "ritual"
        assert ritual.is_module_ritual
        assert actor.get_flag(Flags.PREPARED_SPELLS_BY_CLASS) == {"wizard": [detect_key]}

    async def test_other_classes_are_kept_in_flag(self, spells: dict[str, Spell]) -> None:
        wizard_key = class_spell_key("wizard", spells["Shield"].uuid)
        actor = make_actor(
            make_cleric(),
            make_wizard(),
            flags={Flags.PREPARED_SPELLS_BY_CLASS: {"wizard": [wizard_key]}},
        )
        key, bless = choice(spells["Bless"], "cleric", True)
        await manager_for(actor).save_class_specific_prepared_spells("cleric", {key: bless})
        assert actor.get_flag(Flags.PREPARED_SPELLS_BY_CLASS) == {"wizard": [wizard_key], "cleric": [key]}
        assert actor.get_flag(Flags.PREPARED_SPELLS) == [spells["Shield"].uuid, spells["Bless"].uuid]

    async def test_auto_delete_unprepared(self, spells: dict[str, Spell]) -> None:
        actor = make_actor(make_cleric(), owned_copy(spells["Shield"], prepared=0))
        key, bless = choice(spells["Bless"], "cleric", True)
        settings = SpellStateSettings(auto_delete_unprepared_spells=True)
        await manager_for(actor, settings).save_class_specific_prepared_spells("cleric", {key: bless})
        assert owned_named(actor, "Shield") == []
        assert len(owned_named(actor, "Bless")) == 1


class TestMaintenance:
    async def test_stale_keys_are_dropped(self, spells: dict[str, Spell]) -> None:
        bless_key = class_spell_key("cleric", spells["Bless"].uuid)
        cure_key = class_spell_key("cleric", spells["Cure Wounds"].uuid)
        actor = make_actor(
            make_cleric(),
            owned_copy(spells["Bless"], source_class="cleric", prepared=1),
            flags={Flags.PREPARED_SPELLS_BY_CLASS: {"cleric": [bless_key, cure_key]}},
        )
        assert await manager_for(actor).cleanup_stale_preparation_flags() == 1
        assert actor.get_flag(Flags.PREPARED_SPELLS_BY_CLASS) == {"cleric": [bless_key]}
        assert actor.get_flag(Flags.PREPARED_SPELLS) == [spells["Bless"].uuid]

    async def test_unprepare_class(self, spells: dict[str, Spell]) -> None:
        actor = make_actor(
            make_cleric(),
            owned_copy(spells["Bless"], source_class="cleric", prepared=1),
            owned_copy(spells["Cure Wounds"], source_class="cleric", prepared=2),
            flags={Flags.PREPARED_SPELLS_BY_CLASS: {"cleric": [class_spell_key("cleric", spells["Bless"].uuid)]}},
        )
        assert await manager_for(actor).unprepare_class("cleric") == 1
        assert [spell.name for spell in actor.spells()] == ["Cure Wounds"]
        assert actor.get_flag(Flags.PREPARED_SPELLS_BY_CLASS) == {"cleric": []}


class TestCanChangeSpellStatus:
    def _enforced(self, *items) -> SpellManager:
        return manager_for(make_actor(*items, flags={Flags.ENFORCEMENT_BEHAVIOR: "enforced"}))

    def test_cantrips_are_not_checked(self, spells: dict[str, Spell]) -> None:
        check = self._enforced(make_cleric()).can_change_spell_status(
            spells["Light"], True, False, False, False, "cleric", 6, 6
        )
        assert check.allowed

    def test_at_maximum(self, spells: dict[str, Spell]) -> None:
        check = self._enforced(make_cleric()).can_change_spell_status(
            spells["Bless"], True, False, False, False, "cleric", 6, 6
        )
        assert check.allowed is False
        assert check.message == "Class is at its preparation maximum"

    def test_long_rest_swapping(self, spells: dict[str, Spell]) -> None:
        manager = self._enforced(make_cleric())
        denied = manager.can_change_spell_status(spells["Bless"], False, True, False, False, "cleric", 3, 6)
        assert denied.message == "Spells can only be swapped after a long rest"
        assert manager.can_change_spell_status(spells["Bless"], False, True, False, True, "cleric", 3, 6).allowed

    def test_level_up_swapping(self, spells: dict[str, Spell]) -> None:
        manager = self._enforced(make_class("Bard"))
        denied = manager.can_change_spell_status(spells["Bless"], False, True, False, False, "bard", 3, 6)
        assert denied.message == "Spells can only be swapped on level-up"
        assert manager.can_change_spell_status(spells["Bless"], False, True, True, False, "bard", 3, 6).allowed

    def test_no_swapping(self, spells: dict[str, Spell]) -> None:
        manager = self._enforced(make_class("Fighter", progression="third"))
        check = manager.can_change_spell_status(spells["Bless"], False, True, True, True, "fighter", 3, 6)
        assert check.message == "Prepared spells cannot be swapped"

    def test_unchecking_unsaved_choice_is_free(self, spells: dict[str, Spell]) -> None:
        manager = self._enforced(make_class("Fighter", progression="third"))
        assert manager.can_change_spell_status(spells["Bless"], False, False, False, False, "fighter", 3, 6).allowed

    def test_notify_gm_informs(self, spells: dict[str, Spell]) -> None:
        notifications = RecordingNotifications()
        manager = manager_for(make_actor(make_cleric()), notifications=notifications)
        check = manager.can_change_spell_status(spells["Bless"], True, False, False, False, "cleric", 6, 6)
        assert check.allowed
        assert notifications.of_level("info") == ["Over the spell limit: 7/6"]
