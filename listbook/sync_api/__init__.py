# listbook/sync_api/__init__.py
from .client import ListSyncAPIClient
from .exceptions import (
    SyncAPIError, APIConnectionError, APIRequestError,
    APIResponseError, AuthenticationError
)
from .schemas import ListRecord, SyncListsPayload, RecordType
from .utils import add_timestamps, build_sync_payload

__all__ = [
    "ListSyncAPIClient",
    "SyncAPIError", "APIConnectionError", "APIRequestError",
    "APIResponseError", "AuthenticationError",
    "ListRecord", "SyncListsPayload", "RecordType",
    "add_timestamps", "build_sync_payload",
]
