# listbook/config.py
# Description: Configuration management for the listbook sync client.
#
# Imports
import copy
import tomllib
from pathlib import Path
from typing import Dict, Any, Optional
#
# Third-Party Imports
import toml
from loguru import logger
#
# Local Imports
from listbook.Constants import (
    SYNC_DEBOUNCE_SECONDS,
    SYNC_RETRY_INTERVAL_SECONDS,
    MIN_SYNC_BUSY_SECONDS,
    TOKEN_REFRESH_TIMEOUT_SECONDS,
    SOFT_DELETE_RETENTION_DAYS,
    HTTP_REQUEST_TIMEOUT_SECONDS,
)
#
#######################################################################################################################
#
# Functions:

# --- Path to the client's configuration file ---
DEFAULT_CONFIG_PATH = Path.home() / ".config" / "listbook" / "config.toml"

# --- Base directory for the local store and log file ---
BASE_DATA_DIR = Path.home() / ".local" / "share" / "listbook"

CONFIG_TOML_CONTENT = """
# Configuration for the listbook client
# Located at: ~/.config/listbook/config.toml
[general]
log_level = "INFO" # DEBUG, INFO, WARNING, ERROR, CRITICAL

[sync]
enabled = true
# Bearer mode: the host supplies the API base URL and token at runtime, this is the fallback base URL.
api_base_url = ""
# Session (cookie) mode: origin the relative sync path is resolved against.
session_base_url = "http://localhost:3000"
debounce_seconds = 10.0
retry_interval_seconds = 60.0
min_busy_seconds = 0.6
token_refresh_timeout_seconds = 10.0
request_timeout_seconds = 30.0
tombstone_retention_days = 7

[database]
# Key/value store holding the serialized lists and settings.
store_path = "~/.local/share/listbook/listbook_store.db"

[logging]
# Log file will be placed in the same directory as the store_path above.
log_filename = "listbook.log"
file_log_level = "INFO"
log_rotation = "10 MB"
log_retention = 5
"""

try:
    DEFAULT_CONFIG_FROM_TOML: Dict[str, Any] = tomllib.loads(CONFIG_TOML_CONTENT)
except tomllib.TOMLDecodeError as e:
    logger.critical(f"FATAL: Could not parse internal CONFIG_TOML_CONTENT: {e}.")
    DEFAULT_CONFIG_FROM_TOML = {}


# --- Helper for deep merging dictionaries ---
def deep_merge_dicts(base: Dict, update: Dict) -> Dict:
    """Recursively merges update_dict into base_dict."""
    merged = copy.deepcopy(base)
    for key, value in update.items():
        if isinstance(value, dict) and key in merged and isinstance(merged[key], dict):
            merged[key] = deep_merge_dicts(merged[key], value)
        else:
            merged[key] = value
    return merged


def _get_typed_value(data_dict: Dict, key: str, default: Any, target_type: type = str) -> Any:
    """Helper to get value from dict and cast to type, with logging for type errors."""
    value = data_dict.get(key, default)
    if value is default:
        return value
    if value is None:
        return default
    try:
        if target_type == bool:
            if isinstance(value, bool):
                return value
            return str(value).lower() in ['true', '1', 't', 'y', 'yes']
        return target_type(value)
    except (ValueError, TypeError) as e:
        logger.warning(f"Config key '{key}' has value '{value}' which could not be converted to {target_type}. Using default: '{default}'. Error: {e}")
        return default


# --- Primary Configuration Loading Logic ---
_CONFIG_CACHE: Optional[Dict[str, Any]] = None


def load_settings(force_reload: bool = False, config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Loads settings from ~/.config/listbook/config.toml (or `config_path`).
    If the file doesn't exist, it's created with default values.
    """
    global _CONFIG_CACHE
    if _CONFIG_CACHE is not None and not force_reload:
        return _CONFIG_CACHE

    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    loaded_config = copy.deepcopy(DEFAULT_CONFIG_FROM_TOML)

    if not path.exists():
        logger.info(f"Config file not found at {path}. Creating with default values.")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8") as f:
                f.write(CONFIG_TOML_CONTENT)
            logger.info(f"Created default config file at {path}")
        except OSError as e:
            logger.error(f"Could not create default config file {path}: {e}. Using internal defaults.")
    else:
        logger.info(f"Attempting to load config from: {path}")
        try:
            with open(path, "rb") as f:
                user_config_from_file = tomllib.load(f)
            loaded_config = deep_merge_dicts(loaded_config, user_config_from_file)
            logger.info(f"Successfully loaded and merged config from {path}")
        except tomllib.TOMLDecodeError as e:
            logger.error(f"Error decoding TOML config file {path}: {e}. Using internal defaults.")
        except OSError as e:
            logger.error(f"Could not read config file {path}: {e}. Using internal defaults.")

    _CONFIG_CACHE = loaded_config
    logger.debug(f"load_settings returning config with top-level keys: {list(loaded_config.keys())}")
    return _CONFIG_CACHE


def get_cli_setting(section: str, key: str, default: Any = None) -> Any:
    """Helper to get a specific setting from the loaded configuration."""
    config = load_settings()
    section_data = config.get(section)
    if isinstance(section_data, dict):
        return section_data.get(key, default)
    return default


def save_cli_setting(section: str, key: str, value: Any, config_path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Writes a single setting into the user's config file and reloads the cache.
    Only the user's file is rewritten; defaults stay in CONFIG_TOML_CONTENT.
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    user_config: Dict[str, Any] = {}
    if path.exists():
        try:
            with open(path, "rb") as f:
                user_config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            logger.warning(f"Existing config file {path} is not valid TOML ({e}); it will be replaced.")
    section_data = user_config.setdefault(section, {})
    if not isinstance(section_data, dict):
        section_data = {}
        user_config[section] = section_data
    section_data[key] = value

    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        toml.dump(user_config, f)
    logger.info(f"Saved setting [{section}].{key} to {path}")
    return load_settings(force_reload=True, config_path=path)


def get_sync_settings(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Returns the [sync] section with types normalised and timings clamped to sane minimums."""
    config = config if config is not None else load_settings()
    section = config.get("sync", {})
    if not isinstance(section, dict):
        logger.error(f"Config 'sync' section is not a dictionary. Found: {type(section)}. Using defaults.")
        section = {}

    settings = {
        "enabled": _get_typed_value(section, "enabled", True, bool),
        "api_base_url": _get_typed_value(section, "api_base_url", "", str).rstrip('/'),
        "session_base_url": _get_typed_value(section, "session_base_url", "", str).rstrip('/'),
        "debounce_seconds": _get_typed_value(section, "debounce_seconds", SYNC_DEBOUNCE_SECONDS, float),
        "retry_interval_seconds": _get_typed_value(section, "retry_interval_seconds", SYNC_RETRY_INTERVAL_SECONDS, float),
        "min_busy_seconds": _get_typed_value(section, "min_busy_seconds", MIN_SYNC_BUSY_SECONDS, float),
        "token_refresh_timeout_seconds": _get_typed_value(section, "token_refresh_timeout_seconds", TOKEN_REFRESH_TIMEOUT_SECONDS, float),
        "request_timeout_seconds": _get_typed_value(section, "request_timeout_seconds", HTTP_REQUEST_TIMEOUT_SECONDS, float),
        "tombstone_retention_days": _get_typed_value(section, "tombstone_retention_days", SOFT_DELETE_RETENTION_DAYS, int),
    }
    settings["debounce_seconds"] = max(0.0, settings["debounce_seconds"])
    settings["retry_interval_seconds"] = max(1.0, settings["retry_interval_seconds"])
    settings["min_busy_seconds"] = max(0.0, settings["min_busy_seconds"])
    settings["token_refresh_timeout_seconds"] = max(0.1, settings["token_refresh_timeout_seconds"])
    settings["tombstone_retention_days"] = max(0, settings["tombstone_retention_days"])
    return settings


# --- Store and Log File Path Getters ---
def get_local_store_path() -> Path:
    default_path_str = DEFAULT_CONFIG_FROM_TOML.get("database", {}).get("store_path", str(BASE_DATA_DIR / "listbook_store.db"))
    path_str = get_cli_setting("database", "store_path", default_path_str)
    return Path(path_str).expanduser().resolve()


def get_log_file_path() -> Path:
    store_parent_dir = get_local_store_path().parent
    default_log_filename = DEFAULT_CONFIG_FROM_TOML.get("logging", {}).get("log_filename", "listbook.log")
    log_filename = get_cli_setting("logging", "log_filename", default_log_filename)
    log_file_path = store_parent_dir / log_filename
    try:
        log_file_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Could not create log directory {log_file_path.parent}: {e}")
    return log_file_path

#
# End of listbook/config.py
#######################################################################################################################
