"""
Pytest configuration and fixtures for spell-state-engine tests.
"""

import sys
from pathlib import Path

import pytest

# Add src directory to Python path to allow importing spell_state
src_path = Path(__file__).parent.parent / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from spell_state.memory import InMemoryUserDataStore, RecordingNotifications  # noqa: E402
from spell_state.rules import RuleResolver  # noqa: E402
from spell_state.settings import SpellStateSettings  # noqa: E402

from factories import make_compendium, standard_spells  # noqa: E402


# Configure anyio to only use asyncio (not trio)
@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings() -> SpellStateSettings:
    return SpellStateSettings()


@pytest.fixture
def rules(settings: SpellStateSettings) -> RuleResolver:
    return RuleResolver(settings)


@pytest.fixture
def spells():
    return standard_spells()


@pytest.fixture
def compendium():
    return make_compendium()


@pytest.fixture
def notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture
def user_store() -> InMemoryUserDataStore:
    return InMemoryUserDataStore()
