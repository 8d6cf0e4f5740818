"""Tests for per-user spell notes, favorites and usage stats."""

import pytest

from spell_state.memory import InMemoryUserDataStore
from spell_state.models import OrganizedSpell, Spell
from spell_state.settings import SpellStateSettings
from spell_state.user_data import UserDataService

from factories import make_actor, make_cleric, owned_copy

pytestmark = pytest.mark.anyio


# ─── Helpers ─────────────────────────────────────────────────────────


class CountingStore(InMemoryUserDataStore):
    def __init__(self) -> None:
        super().__init__()
        self.reads = 0

    async def read_page(self, user_id):
        self.reads += 1
        return await super().read_page(user_id)


class UnreadableStore(InMemoryUserDataStore):
    async def read_page(self, user_id):
        raise OSError("journal locked")


@pytest.fixture
def store() -> CountingStore:
    return CountingStore()


@pytest.fixture
def service(store: CountingStore) -> UserDataService:
    return UserDataService(store, SpellStateSettings(spell_notes_max_length=10))


class TestReads:
    async def test_unknown_spell_is_blank(self, service: UserDataService, spells: dict[str, Spell]) -> None:
        data = await service.get_user_data_for_spell(spells["Bless"], "player1", "hero")
        assert (data.notes, data.favorited, data.usage_stats) == ("", False, None)

    async def test_reads_page_format(self, store: CountingStore, service: UserDataService) -> None:
        await store.write_page(
            "player1",
            {
                "Compendium.x.Item.bless": {
                    "notes": "Buff the front line",
                    "actorData": {"hero": {"favorited": True, "usageStats": {"count": 3, "lastUsed": 17}}},
                }
            },
        )
        hero = await service.get_user_data_for_spell("Compendium.x.Item.bless", "player1", "hero")
        assert hero.favorited is True
        assert hero.has_notes
        assert hero.usage_stats.count == 3
        assert hero.usage_stats.last_used == 17

        other = await service.get_user_data_for_spell("Compendium.x.Item.bless", "player1", "sidekick")
        assert other.notes == "Buff the front line"
        assert other.favorited is False

    async def test_reads_are_cached(self, store: CountingStore, service: UserDataService) -> None:
        await service.get_user_data_for_spell("Compendium.x.Item.a", "player1", "hero")
        await service.get_user_data_for_spell("Compendium.x.Item.a", "player1", "hero")
        assert store.reads == 1
        service.invalidate("player1")
        await service.get_user_data_for_spell("Compendium.x.Item.a", "player1", "hero")
        assert store.reads == 2

    async def test_prefetch_reads_page_once(self, store: CountingStore, service: UserDataService) -> None:
        await service.prefetch(["Compendium.x.Item.a", "Compendium.x.Item.b"], "player1", "hero")
        assert store.reads == 1
        assert service.cached("Compendium.x.Item.b", "player1", "hero") is not None
        await service.prefetch(["Compendium.x.Item.a"], "player1", "hero")
        assert store.reads == 1

    async def test_unreadable_page(self) -> None:
        service = UserDataService(UnreadableStore())
        assert await service.get_user_data_for_spell("Compendium.x.Item.a", "player1") is None
        assert await service.set_spell_notes("Compendium.x.Item.a", "hi there", "player1") is False

    def test_owned_uuid_resolves_to_source(self, spells: dict[str, Spell]) -> None:
        owned = owned_copy(spells["Bless"], source_class="cleric")
        actor = make_actor(make_cleric(), owned)
        assert UserDataService.resolve_identity(owned.uuid, actor) == spells["Bless"].uuid
        assert UserDataService.resolve_identity(owned) == spells["Bless"].uuid
        assert UserDataService.resolve_identity("Actor.hero.Item.gone", actor) == "Actor.hero.Item.gone"


class TestWrites:
    async def test_favorite_is_per_actor(self, store: CountingStore, service: UserDataService) -> None:
        assert await service.set_spell_favorite("Compendium.x.Item.a", True, "player1", "hero")
        page = await store.read_page("player1")
        assert page["Compendium.x.Item.a"]["actorData"]["hero"]["favorited"] is True
        assert (await service.get_user_data_for_spell("Compendium.x.Item.a", "player1", "hero")).favorited
        assert not (await service.get_user_data_for_spell("Compendium.x.Item.a", "player1", "ally")).favorited

    async def test_notes_are_trimmed_and_shared(self, service: UserDataService) -> None:
        await service.get_user_data_for_spell("Compendium.x.Item.a", "player1", "hero")
        assert await service.set_spell_notes("Compendium.x.Item.a", "  abcdefghijklmno  ", "player1")
        hero = await service.get_user_data_for_spell("Compendium.x.Item.a", "player1", "hero")
        assert hero.notes == "abcdefghij"

    async def test_usage_is_counted_by_context(self, store: CountingStore, service: UserDataService) -> None:
        await service.record_usage("Compendium.x.Item.a", "player1", "hero", "combat")
        await service.record_usage("Compendium.x.Item.a", "player1", "hero")
        stats = (await store.read_page("player1"))["Compendium.x.Item.a"]["actorData"]["hero"]["usageStats"]
        assert stats["count"] == 2
        assert stats["contextUsage"] == {"combat": 1, "exploration": 1}
        assert stats["lastUsed"] is not None

    async def test_unknown_usage_context(self, service: UserDataService) -> None:
        with pytest.raises(ValueError):
            await service.record_usage("Compendium.x.Item.a", "player1", "hero", "downtime")


class TestEnhance:
    async def test_overlay(self, service: UserDataService, spells: dict[str, Spell]) -> None:
        bless = spells["Bless"]
        await service.set_spell_favorite(bless, True, "player1", "hero")
        await service.record_usage(bless, "player1", "hero")
        entry = OrganizedSpell(uuid=bless.uuid, id=bless.id, name=bless.name, level=1, spell=bless)
        service.enhance_spell(entry, "player1", "hero")
        assert entry.favorited is True
        assert entry.filter_data.favorited is True
        assert entry.usage_count == 1

    def test_nothing_cached_leaves_entry(self, service: UserDataService, spells: dict[str, Spell]) -> None:
        bless = spells["Bless"]
        entry = OrganizedSpell(uuid=bless.uuid, id=bless.id, name=bless.name, level=1, spell=bless)
        assert service.enhance_spell(entry, "player1", "hero").favorited is False
