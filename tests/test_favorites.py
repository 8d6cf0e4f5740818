"""Tests for syncing journal favorites onto the actor's native favorites."""

import pytest

from spell_state.favorites import FavoritesSync, favorite_id
from spell_state.memory import InMemoryUserDataStore
from spell_state.models import FavoriteEntry, Spell
from spell_state.user_data import UserDataService

from factories import make_actor, make_cleric, make_compendium, owned_copy

pytestmark = pytest.mark.anyio


# ─── Helpers ─────────────────────────────────────────────────────────


@pytest.fixture
def user_data(user_store: InMemoryUserDataStore) -> UserDataService:
    return UserDataService(user_store)


@pytest.fixture
def sync(user_data: UserDataService) -> FavoritesSync:
    return FavoritesSync(user_data, make_compendium())


@pytest.fixture
def owned(spells: dict[str, Spell]) -> dict[str, Spell]:
    return {
        name: owned_copy(spells[name], id=name.lower().replace(" ", ""), source_class="cleric", prepared=1)
        for name in ("Bless", "Cure Wounds", "Guiding Bolt")
    }


def favorite_ids(actor) -> list[str]:
    return [entry.id for entry in actor.favorites]


class TestLookup:
    async def test_by_id_source_and_uuid(self, sync: FavoritesSync, owned: dict[str, Spell]) -> None:
        bless = owned["Bless"]
        actor = make_actor(make_cleric(), bless)
        for reference in (bless.id, bless.uuid, bless.compendium_source):
            assert (await sync.find_actor_spell_by_uuid(reference, actor)).id == bless.id

    async def test_falls_back_to_compendium_name(self, sync: FavoritesSync, spells: dict[str, Spell]) -> None:
        homebrew = Spell(id="hb", uuid="Actor.hero.Item.hb", name="Bless", level=1)
        actor = make_actor(make_cleric(), homebrew)
        assert (await sync.find_actor_spell_by_uuid(spells["Bless"].uuid, actor)).id == "hb"

    async def test_not_owned(self, sync: FavoritesSync, spells: dict[str, Spell]) -> None:
        assert await sync.find_actor_spell_by_uuid(spells["Fireball"].uuid, make_actor(make_cleric())) is None


class TestSingleSpell:
    async def test_add_is_idempotent(self, sync: FavoritesSync, owned: dict[str, Spell]) -> None:
        actor = make_actor(make_cleric(), owned["Bless"])
        assert await sync.add_spell_to_actor_favorites(owned["Bless"].compendium_source, actor)
        assert await sync.add_spell_to_actor_favorites(owned["Bless"].compendium_source, actor)
        assert actor.favorites == [FavoriteEntry(id=".Item.bless", sort=100000)]

    async def test_add_unowned_fails(self, sync: FavoritesSync, spells: dict[str, Spell]) -> None:
        actor = make_actor(make_cleric())
        assert await sync.add_spell_to_actor_favorites(spells["Fireball"].uuid, actor) is False
        assert actor.favorites == []

    async def test_remove(self, sync: FavoritesSync, owned: dict[str, Spell]) -> None:
        actor = make_actor(make_cleric(), owned["Bless"])
        await sync.add_spell_to_actor_favorites(owned["Bless"].uuid, actor)
        assert await sync.remove_spell_from_actor_favorites(owned["Bless"].uuid, actor)
        assert actor.favorites == []

    async def test_toggle_updates_journal_and_actor(
        self, sync: FavoritesSync, user_data: UserDataService, owned: dict[str, Spell]
    ) -> None:
        bless = owned["Bless"]
        actor = make_actor(make_cleric(), bless)
        assert await sync.toggle_spell_favorite(bless.uuid, actor)
        assert favorite_ids(actor) == [favorite_id(bless)]
        data = await user_data.get_user_data_for_spell(bless.compendium_source, "player1", "hero")
        assert data.favorited is True

        assert await sync.toggle_spell_favorite(bless.uuid, actor)
        assert actor.favorites == []
        data = await user_data.get_user_data_for_spell(bless.compendium_source, "player1", "hero")
        assert data.favorited is False


class TestBulk:
    async def test_sync_on_save(self, sync: FavoritesSync, user_data: UserDataService, owned: dict[str, Spell]) -> None:
        actor = make_actor(make_cleric(), *owned.values())
        await user_data.set_spell_favorite(owned["Cure Wounds"].compendium_source, True, "player1", "hero")
        await sync.sync_on_save(actor, [spell.compendium_source for spell in owned.values()])
        assert favorite_ids(actor) == [".Item.curewounds"]

    async def test_form_rewrite_keeps_foreign_entries(
        self, sync: FavoritesSync, user_data: UserDataService, owned: dict[str, Spell]
    ) -> None:
        actor = make_actor(make_cleric(), *owned.values())
        await actor.update_favorites(
            [
                FavoriteEntry(type="effect", id="bardic-inspiration", sort=1),
                FavoriteEntry(id=".Item.longsword", sort=2),
                FavoriteEntry(id=".Item.bless", sort=3),
            ]
        )
        for name in ("Guiding Bolt", "Cure Wounds"):
            await user_data.set_spell_favorite(owned[name].compendium_source, True, "player1", "hero")

        assert await sync.process_favorites_from_form(actor)
        assert favorite_ids(actor) == ["bardic-inspiration", ".Item.longsword", ".Item.curewounds", ".Item.guidingbolt"]
        assert [entry.sort for entry in actor.favorites][2:] == [100000, 100001]

    async def test_form_rewrite_without_spell_favorites_writes_nothing(
        self, sync: FavoritesSync, owned: dict[str, Spell]
    ) -> None:
        actor = make_actor(make_cleric(), *owned.values())
        assert await sync.process_favorites_from_form(actor)
        assert actor.write_count == 0
