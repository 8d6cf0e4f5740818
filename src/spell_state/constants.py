"""
Shared constants for the spell state engine.

Flag names, rule enumerations, wizard defaults and the search filter
configuration live here so every component reads the same values.
"""

from __future__ import annotations

from enum import Enum

MODULE_ID = "spell-book"


class Flags:
    """Actor flag keys stored under the module namespace."""

    CANTRIP_SWAP_TRACKING = "cantripSwapTracking"
    CLASS_RULES = "classRules"
    ENFORCEMENT_BEHAVIOR = "enforcementBehavior"
    LONG_REST_COMPLETED = "longRestCompleted"
    PREPARED_SPELLS = "preparedSpells"
    PREPARED_SPELLS_BY_CLASS = "preparedSpellsByClass"
    PREVIOUS_CANTRIP_MAX = "previousCantripMax"
    PREVIOUS_LEVEL = "previousLevel"
    RECENT_SEARCHES = "recentSearches"
    RULE_SET_OVERRIDE = "ruleSetOverride"
    SPELL_LOADOUTS = "spellLoadouts"
    SWAP_TRACKING = "swapTracking"
    WIZARD_COPIED_SPELLS = "wizardCopiedSpells"
    WIZARD_RITUAL_CASTING = "wizardRitualCasting"

    # Flags suffixed with `_<classIdentifier>`
    WIZARD_SCOPED = (WIZARD_COPIED_SPELLS, WIZARD_RITUAL_CASTING)

    # Flags keyed by class identifier
    CLASS_KEYED = (CLASS_RULES, PREPARED_SPELLS_BY_CLASS, CANTRIP_SWAP_TRACKING, SWAP_TRACKING)


def wizard_flag(base: str, class_identifier: str) -> str:
    """Build a wizard-scoped flag key such as ``wizardCopiedSpells_wizard``."""
    return f"{base}_{class_identifier}"


class SwapMode(str, Enum):
    """When a known spell or cantrip may be exchanged."""
    NONE = "none"
    LEVEL_UP = "levelUp"
    LONG_REST = "longRest"


class RitualCastingMode(str, Enum):
    """How a class accesses ritual spells."""
    NONE = "none"
    PREPARED = "prepared"
    ALWAYS = "always"


class RuleSetName(str, Enum):
    """Named bundles of default class rules."""
    LEGACY = "legacy"
    MODERN = "modern"


class EnforcementBehavior(str, Enum):
    """What happens when a preparation limit is exceeded."""
    ENFORCED = "enforced"
    NOTIFY_GM = "notifyGM"
    UNENFORCED = "unenforced"


class PreparationMode(str, Enum):
    """Casting methods for owned spell items."""
    SPELL = "spell"
    PACT = "pact"
    AT_WILL = "atwill"
    INNATE = "innate"
    RITUAL = "ritual"
    ALWAYS = "always"
    GRANTED = "granted"
    SCROLL = "scroll"


SPECIAL_PREPARATION_MODES = frozenset(
    {PreparationMode.INNATE.value, PreparationMode.PACT.value, PreparationMode.AT_WILL.value}
)


class PreparationContext(str, Enum):
    """Where a spell shows up in the organised model."""
    PREPARABLE = "preparable"
    SPECIAL = "special"
    WIZARD_LEARNING = "wizardLearning"


class WizardSpellSource(str, Enum):
    """How a spell entered a personal spellbook."""
    COPIED = "copied"
    FREE = "free"
    INITIAL = "initial"
    LEVEL_UP = "levelUp"
    SCROLL = "scroll"


class ClassIdentifiers:
    ARTIFICER = "artificer"
    BARD = "bard"
    CLERIC = "cleric"
    DRUID = "druid"
    PALADIN = "paladin"
    RANGER = "ranger"
    SORCERER = "sorcerer"
    WARLOCK = "warlock"
    WIZARD = "wizard"


# Wizard learning economy defaults
WIZARD_DEFAULT_RITUAL_CASTING = True
WIZARD_SPELLS_PER_LEVEL = 2
WIZARD_STARTING_SPELLS = 6

# Owned-spell priorities used when collapsing duplicates
PRIORITY_PREPARED = 100
PRIORITY_ALWAYS_PREPARED = 90
PRIORITY_SPECIAL_MODE = 50
PRIORITY_DEFAULT = 30
PRIORITY_RITUAL = 10

# Spellbook tab level that lists learnable scrolls
SCROLL_LEVEL = "scroll"

MAX_SPELL_LEVEL = 9
MAX_PREPARATION_BONUS = 20

# Native favorites written by the engine start at this sort key
FAVORITE_SORT_BASE = 100000
FAVORITE_ITEM_PREFIX = ".Item."

# Timing (milliseconds)
ADVANCED_SEARCH_DEBOUNCE_MS = 150
FUZZY_SEARCH_DEBOUNCE_MS = 800
FOCUS_DEBOUNCE_MS = 50
LOADOUT_CACHE_TTL_MS = 30000

# Search limits
MAX_RECENT_SEARCHES = 8
MAX_FUZZY_SUGGESTIONS = 5
MIN_SEARCH_VALUE_LENGTH = 2
MIN_QUERY_LENGTH_FOR_SUGGESTIONS = 3

BOOLEAN_FIELDS = ("requiresSave", "concentration", "prepared", "favorited", "ritual")
BOOLEAN_VALUES = ("TRUE", "FALSE", "YES", "NO")
MATERIAL_VALUES = ("CONSUMED", "NOTCONSUMED")
MULTI_VALUE_FIELDS = ("damageType", "condition")
COMMON_CASTING_TIMES = (
    "ACTION:1", "BONUS:1", "REACTION:1", "MINUTE:1", "MINUTE:10",
    "HOUR:1", "HOUR:8", "HOUR:24", "SPECIAL:1",
)

# Filter panel fields and the aliases the advanced search grammar accepts.
DEFAULT_FILTER_CONFIG: tuple[dict, ...] = (
    {"id": "name", "type": "search", "search_aliases": ()},
    {"id": "level", "type": "dropdown", "search_aliases": ("LEVEL", "LVL")},
    {"id": "school", "type": "dropdown", "search_aliases": ("SCHOOL",)},
    {"id": "castingTime", "type": "dropdown", "search_aliases": ("CASTTIME", "CASTING")},
    {"id": "range", "type": "range", "search_aliases": ("RANGE",)},
    {"id": "damageType", "type": "dropdown", "search_aliases": ("DAMAGE", "DMG")},
    {"id": "condition", "type": "dropdown", "search_aliases": ("CONDITION",)},
    {"id": "requiresSave", "type": "dropdown", "search_aliases": ("SAVE", "REQUIRESSAVE")},
    {"id": "concentration", "type": "dropdown", "search_aliases": ("CON", "CONCENTRATION")},
    {"id": "materialComponents", "type": "dropdown", "search_aliases": ("MATERIALS", "COMPONENTS")},
    {"id": "prepared", "type": "checkbox", "search_aliases": ("PREPARED",)},
    {"id": "ritual", "type": "checkbox", "search_aliases": ("RITUAL",)},
    {"id": "favorited", "type": "checkbox", "search_aliases": ("FAVORITED", "FAVE", "FAV")},
)
