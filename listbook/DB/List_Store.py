# List_Store.py
# Description: Typed persistence for the record collection and the settings object.
#
# Imports
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
#
# 3rd-Party Imports
from loguru import logger
#
# Local Imports
from listbook.Constants import LISTS_STORAGE_KEY, SETTINGS_STORAGE_KEY
from listbook.DB.Local_Storage_DB import LocalStorageDB
#
########################################################################################################################
#
# Classes:

class ListStore:
    """
    Reads and writes the serialized record collection and settings.

    The whole collection lives under one key; every write replaces it. A value
    that cannot be decoded reads as empty so a corrupted store never blocks the
    client from starting.
    """

    def __init__(self, db: Union[LocalStorageDB, str, Path],
                 lists_key: str = LISTS_STORAGE_KEY,
                 settings_key: str = SETTINGS_STORAGE_KEY):
        self.db = db if isinstance(db, LocalStorageDB) else LocalStorageDB(db)
        self.lists_key = lists_key
        self.settings_key = settings_key

    def load_lists(self) -> List[Dict[str, Any]]:
        raw = self.db.get_item(self.lists_key)
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Stored collection under '{self.lists_key}' is not valid JSON ({e}); treating as empty.")
            return []
        if not isinstance(data, list):
            logger.error(f"Stored collection under '{self.lists_key}' is a {type(data).__name__}, expected a list; treating as empty.")
            return []
        return [r for r in data if isinstance(r, dict)]

    def save_lists(self, records: List[Dict[str, Any]]) -> None:
        self.db.set_item(self.lists_key, json.dumps(list(records)))
        logger.debug(f"Saved {len(records)} record(s) to local store.")

    def load_settings(self) -> Dict[str, Any]:
        raw = self.db.get_item(self.settings_key)
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error(f"Stored settings are not valid JSON ({e}); treating as empty.")
            return {}
        return data if isinstance(data, dict) else {}

    def save_settings(self, settings: Dict[str, Any]) -> None:
        self.db.set_item(self.settings_key, json.dumps(settings))

    def update_settings(self, **changes: Any) -> Dict[str, Any]:
        settings = {**self.load_settings(), **changes}
        self.save_settings(settings)
        return settings

    def get_setting(self, key: str, default: Optional[Any] = None) -> Any:
        return self.load_settings().get(key, default)

    def close(self) -> None:
        self.db.close_connection()

#
# End of List_Store.py
########################################################################################################################
