"""Tagger settings system.

Defines all configurable tagger options, their fallbacks, validation rules,
and grouping for the UI. Settings are persisted as user overrides in the
user_settings table of stash_tagger.db.

Resolution order:
    1. User override (from DB), highest priority
    2. Hardcoded fallbacks, always present

Only user overrides are stored in the DB. Absence of a key means "use the
fallback". This keeps the table sparse and resets easy (delete the row).

A tagger session works from a TaggerConfig snapshot so a settings change
never alters a save that is already running.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from query_builder import DEFAULT_BLACKLIST, ParseMode

logger = logging.getLogger(__name__)


# ============================================================================
# Setting definitions
# ============================================================================

class SettingType(str, Enum):
    INT = "int"
    FLOAT = "float"
    BOOL = "bool"
    STRING = "string"
    CHOICE = "choice"
    LIST = "list"


@dataclass(frozen=True)
class SettingDef:
    """Definition of a single configurable setting."""
    key: str
    label: str
    description: str
    category: str
    type: SettingType
    fallback: Any
    min_val: Optional[float] = None
    max_val: Optional[float] = None
    choices: Optional[tuple] = None


# All settings, keyed by setting key
SETTING_DEFS: dict[str, SettingDef] = {}

# Category metadata for UI rendering
CATEGORIES = {
    "search": {"label": "Search", "order": 0},
    "save": {"label": "Saving", "order": 1},
    "rate_limits": {"label": "Rate Limits", "order": 2},
}

# Scene fields that can be protected from being overwritten on save
EXCLUDABLE_FIELDS = ("title", "date", "details", "url", "cover_image")


def _define(
    key: str,
    label: str,
    description: str,
    category: str,
    type: SettingType,
    fallback: Any,
    min_val: Optional[float] = None,
    max_val: Optional[float] = None,
    choices: Optional[tuple] = None,
) -> SettingDef:
    """Register a setting definition."""
    defn = SettingDef(
        key=key, label=label, description=description,
        category=category, type=type, fallback=fallback,
        min_val=min_val, max_val=max_val, choices=choices,
    )
    SETTING_DEFS[key] = defn
    return defn


# -- Search --
_define("mode", "Query Mode",
        "Where the default search query comes from",
        "search", SettingType.CHOICE, fallback=ParseMode.AUTO.value,
        choices=tuple(m.value for m in ParseMode))

_define("blacklist", "Blacklist",
        "Case-insensitive regular expressions removed from the query",
        "search", SettingType.LIST, fallback=list(DEFAULT_BLACKLIST))

_define("show_males", "Show Male Performers",
        "Include male performers when matching a scene",
        "search", SettingType.BOOL, fallback=False)

_define("selected_endpoint", "Stash-Box Endpoint",
        "GraphQL URL of the stash-box endpoint to search. Empty uses the first configured",
        "search", SettingType.STRING, fallback="")

# -- Saving --
_define("set_cover_image", "Set Cover Image",
        "Replace the scene cover with the stash-box image",
        "save", SettingType.BOOL, fallback=True)

_define("set_tags", "Set Tags",
        "Apply stash-box tags to the scene",
        "save", SettingType.BOOL, fallback=False)

_define("tag_operation", "Tag Operation",
        "Merge with the scene's existing tags, or overwrite them",
        "save", SettingType.CHOICE, fallback="merge",
        choices=("merge", "overwrite"))

_define("create_tags", "Create Missing Tags",
        "Create local tags for stash-box tags that do not exist yet",
        "save", SettingType.BOOL, fallback=True)

_define("set_organized", "Mark Organized",
        "Mark scenes as organized after saving",
        "save", SettingType.BOOL, fallback=False)

_define("add_stash_ids", "Add Stash IDs",
        "Link scenes and entities to the stash-box record on save",
        "save", SettingType.BOOL, fallback=True)

_define("excluded_fields", "Excluded Fields",
        "Scene fields that keep their local value on save",
        "save", SettingType.LIST, fallback=[], choices=EXCLUDABLE_FIELDS)

# -- Rate Limits --
_define("stash_api_rate", "Stash API Rate",
        "Maximum requests per second to local Stash instance",
        "rate_limits", SettingType.FLOAT, fallback=5.0, min_val=0.5, max_val=50.0)


# ============================================================================
# Env var migration mapping
# ============================================================================

ENV_VAR_MIGRATION: dict[str, str] = {
    # env_var_name -> setting_key
    "STASH_RATE_LIMIT": "stash_api_rate",
}


# ============================================================================
# Session snapshot
# ============================================================================

@dataclass(frozen=True)
class TaggerConfig:
    """Immutable view of the tagger settings for one session."""
    mode: ParseMode = ParseMode.AUTO
    blacklist: tuple[str, ...] = tuple(DEFAULT_BLACKLIST)
    show_males: bool = False
    set_cover_image: bool = True
    set_tags: bool = False
    tag_operation: str = "merge"
    create_tags: bool = True
    set_organized: bool = False
    add_stash_ids: bool = True
    selected_endpoint: str = ""
    excluded_fields: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def from_settings(cls, values: dict[str, Any]) -> "TaggerConfig":
        return cls(
            mode=ParseMode(values["mode"]),
            blacklist=tuple(values["blacklist"]),
            show_males=values["show_males"],
            set_cover_image=values["set_cover_image"],
            set_tags=values["set_tags"],
            tag_operation=values["tag_operation"],
            create_tags=values["create_tags"],
            set_organized=values["set_organized"],
            add_stash_ids=values["add_stash_ids"],
            selected_endpoint=values["selected_endpoint"],
            excluded_fields=frozenset(values["excluded_fields"]),
        )

    def is_excluded(self, field_name: str) -> bool:
        return field_name in self.excluded_fields


# ============================================================================
# Settings manager
# ============================================================================

class SettingsManager:
    """Resolves, validates, and persists settings.

    Uses the user_settings table via a SettingsDB instance.
    """

    # Key prefix to namespace settings in user_settings table
    PREFIX = "settings."

    def __init__(self, db):
        """
        Args:
            db: SettingsDB instance (has get/set/delete user_setting methods)
        """
        self._db = db
        self._cache: Optional[dict[str, Any]] = None

    def _db_key(self, key: str) -> str:
        """Prefix a setting key for storage in user_settings table."""
        return f"{self.PREFIX}{key}"

    def _invalidate_cache(self):
        self._cache = None

    def get_default(self, key: str) -> Any:
        defn = SETTING_DEFS.get(key)
        if defn:
            fallback = defn.fallback
            return list(fallback) if isinstance(fallback, list) else fallback
        raise KeyError(f"Unknown setting: {key}")

    def has_override(self, key: str) -> bool:
        """Check if a setting has a user override stored in the DB."""
        if key not in SETTING_DEFS:
            raise KeyError(f"Unknown setting: {key}")
        return self._db.get_user_setting(self._db_key(key)) is not None

    def get(self, key: str) -> Any:
        """Get the resolved value for a setting."""
        if key not in SETTING_DEFS:
            raise KeyError(f"Unknown setting: {key}")

        override = self._db.get_user_setting(self._db_key(key))
        if override is not None:
            return override

        return self.get_default(key)

    def get_all(self) -> dict[str, Any]:
        """Get all resolved settings as a flat dict."""
        if self._cache is not None:
            return dict(self._cache)

        result = {}
        for key in SETTING_DEFS:
            result[key] = self.get(key)
        self._cache = result
        return dict(result)

    def get_all_with_metadata(self) -> dict:
        """Get all settings grouped by category with metadata for UI rendering."""
        all_db_settings = self._db.get_all_user_settings()
        overrides = {
            k[len(self.PREFIX):]: v
            for k, v in all_db_settings.items()
            if k.startswith(self.PREFIX)
        }

        categories = {}
        for key, defn in SETTING_DEFS.items():
            cat = defn.category
            if cat not in categories:
                cat_meta = CATEGORIES.get(cat, {"label": cat.title(), "order": 99})
                categories[cat] = {
                    "label": cat_meta["label"],
                    "order": cat_meta["order"],
                    "settings": {},
                }

            default = self.get_default(key)
            is_override = key in overrides
            value = overrides[key] if is_override else default

            setting_info = {
                "value": value,
                "default": default,
                "is_override": is_override,
                "type": defn.type.value,
                "label": defn.label,
                "description": defn.description,
            }
            if defn.min_val is not None:
                setting_info["min"] = defn.min_val
            if defn.max_val is not None:
                setting_info["max"] = defn.max_val
            if defn.choices is not None:
                setting_info["choices"] = list(defn.choices)

            categories[cat]["settings"][key] = setting_info

        return {"categories": categories}

    def get_tagger_config(self) -> TaggerConfig:
        """Snapshot the resolved settings for a tagger session."""
        return TaggerConfig.from_settings(self.get_all())

    def set(self, key: str, value: Any) -> Any:
        """Set a user override. Validates and returns the stored value."""
        if key not in SETTING_DEFS:
            raise KeyError(f"Unknown setting: {key}")

        defn = SETTING_DEFS[key]
        value = self._coerce_and_validate(defn, value)
        self._db.set_user_setting(self._db_key(key), value)
        self._invalidate_cache()
        return value

    def set_bulk(self, updates: dict[str, Any]) -> dict[str, Any]:
        """Set multiple user overrides. Returns all stored values."""
        result = {}
        for key, value in updates.items():
            result[key] = self.set(key, value)
        return result

    def delete(self, key: str):
        """Remove a user override, reverting to the fallback."""
        if key not in SETTING_DEFS:
            raise KeyError(f"Unknown setting: {key}")
        self._db.delete_user_setting(self._db_key(key))
        self._invalidate_cache()

    def _coerce_and_validate(self, defn: SettingDef, value: Any) -> Any:
        """Coerce to correct type and validate constraints."""
        if defn.type == SettingType.INT:
            value = int(value)
        elif defn.type == SettingType.FLOAT:
            value = float(value)
        elif defn.type == SettingType.BOOL:
            if isinstance(value, str):
                value = value.lower() in ("true", "1", "yes")
            value = bool(value)
        elif defn.type in (SettingType.STRING, SettingType.CHOICE):
            value = str(value)
        elif defn.type == SettingType.LIST:
            if isinstance(value, str):
                value = [line for line in value.splitlines() if line]
            if not isinstance(value, (list, tuple)):
                raise ValueError(f"{defn.key}: expected a list")
            value = [str(v) for v in value]

        if defn.choices is not None:
            values = value if isinstance(value, list) else [value]
            invalid = [v for v in values if v not in defn.choices]
            if invalid:
                raise ValueError(
                    f"{defn.key}: {', '.join(invalid)} not one of {', '.join(defn.choices)}"
                )

        # Range validation
        if defn.min_val is not None and isinstance(value, (int, float)):
            if value < defn.min_val:
                raise ValueError(f"{defn.key}: {value} below minimum {defn.min_val}")
        if defn.max_val is not None and isinstance(value, (int, float)):
            if value > defn.max_val:
                raise ValueError(f"{defn.key}: {value} above maximum {defn.max_val}")

        return value


# ============================================================================
# Module-level singleton
# ============================================================================

_settings_manager: Optional[SettingsManager] = None


def init_settings(db) -> SettingsManager:
    """Initialize the global settings manager. Called once at startup."""
    global _settings_manager
    _settings_manager = SettingsManager(db)
    return _settings_manager


def get_settings_manager() -> SettingsManager:
    """Get the global settings manager. Must be called after init_settings()."""
    if _settings_manager is None:
        raise RuntimeError("Settings not initialized. Call init_settings() during startup.")
    return _settings_manager


def get_setting(key: str) -> Any:
    """Convenience: get a single resolved setting value."""
    return get_settings_manager().get(key)


def migrate_env_vars(mgr: SettingsManager) -> int:
    """Copy deprecated env vars into settings overrides.

    Only migrates if the env var is set AND no user override already exists
    for that setting. Returns the number of env vars migrated.
    """
    import os

    migrated = 0
    for env_var, setting_key in ENV_VAR_MIGRATION.items():
        env_value = os.environ.get(env_var)
        if env_value is None:
            continue

        if mgr.has_override(setting_key):
            continue

        try:
            mgr.set(setting_key, env_value)
            migrated += 1
            logger.warning(
                f"Migrated env var {env_var}={env_value} → setting '{setting_key}'. "
                f"You can remove {env_var} from your environment."
            )
        except (ValueError, KeyError) as e:
            logger.warning(f"Failed to migrate env var {env_var}: {e}")

    return migrated
