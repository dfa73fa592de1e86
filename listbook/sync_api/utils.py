# listbook/sync_api/utils.py
#
#
# Imports
import json
from typing import Any, Dict, List, Optional
#
# Local Imports
from ..Constants import KEY_UPDATED_AT
from ..Utils.timestamps import utc_now_iso
from .exceptions import APIRequestError
#
#######################################################################################################################
#
# Functions:

def add_timestamps(records: List[Dict[str, Any]], now: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Returns the records with a missing `updated_at` backfilled.
    Records that already carry a timestamp are returned as-is.
    """
    stamp = now or utc_now_iso()
    return [r if r.get(KEY_UPDATED_AT) else {**r, KEY_UPDATED_AT: stamp} for r in records]


def build_sync_payload(records: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Builds the POST body for a full-collection push.

    Raises:
        APIRequestError: If a record cannot be serialized to JSON.
    """
    payload = {"lists": add_timestamps(list(records))}
    try:
        json.dumps(payload)
    except (TypeError, ValueError) as e:
        raise APIRequestError(f"Sync payload is not JSON serializable: {e}") from e
    return payload


def extract_error_detail(response_data: Any, fallback: str) -> str:
    """Pulls a human readable message out of an error body, if there is one."""
    if isinstance(response_data, dict):
        for key in ("detail", "error", "message"):
            value = response_data.get(key)
            if isinstance(value, str) and value:
                return value
    return fallback

#
# End of utils.py
#######################################################################################################################
