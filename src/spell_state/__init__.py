"""
Spell State Engine - spell preparation, wizard spellbooks, rituals, loadouts
and search for tabletop character sheets.
"""

from .exceptions import SpellStateError
from .host import Actor, Compendium, Notifications, UserDataStore
from .settings import SpellStateSettings, load_settings
from .state import SpellbookState

try:
    from importlib.metadata import version as _get_version
    __version__ = _get_version("spell-state-engine")
except Exception:
    __version__ = "0.1.0"  # Fallback if metadata unavailable

__all__ = [
    "Actor",
    "Compendium",
    "Notifications",
    "SpellStateError",
    "SpellStateSettings",
    "SpellbookState",
    "UserDataStore",
    "load_settings",
]
