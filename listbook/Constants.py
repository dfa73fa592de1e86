# Constants.py
# Description: Constants shared by the ordering, storage and sync layers
#
# Imports
#
# 3rd-Party Imports
#
# Local Imports
#
########################################################################################################################
#
# Constants:

# --- Record types ---
RECORD_TYPE_LIST = "list"
RECORD_TYPE_FOLDER = "folder"
ALL_RECORD_TYPES = [RECORD_TYPE_LIST, RECORD_TYPE_FOLDER]

# --- Record keys (wire format of the sync endpoint) ---
KEY_ID = "id"
KEY_TYPE = "type"
KEY_RANK = "rank"
KEY_FOLDER = "folder"
KEY_OPEN = "open"
KEY_UPDATED_AT = "updated_at"
KEY_DELETED = "_deleted"
# Fields that only exist for sync bookkeeping and never count as a user edit
SYNC_ONLY_KEYS = (KEY_UPDATED_AT, "_broadcast_until")

# --- Local storage keys ---
LISTS_STORAGE_KEY = "listbook.lists"
SETTINGS_STORAGE_KEY = "listbook.settings"

# --- Sync endpoints ---
# Session (cookie) mode talks to the web origin, bearer mode to the host supplied API base URL
SYNC_PATH_SESSION = "/api/builder/sync"
SYNC_PATH_BEARER = "/api/v1/builder/sync"

# --- Sync timing defaults (seconds) ---
SYNC_DEBOUNCE_SECONDS = 10.0
SYNC_RETRY_INTERVAL_SECONDS = 60.0
MIN_SYNC_BUSY_SECONDS = 0.6
TOKEN_REFRESH_TIMEOUT_SECONDS = 10.0
SOFT_DELETE_RETENTION_DAYS = 7
HTTP_REQUEST_TIMEOUT_SECONDS = 30.0

#
# End of Constants.py
########################################################################################################################
