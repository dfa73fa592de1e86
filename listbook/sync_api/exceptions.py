# listbook/sync_api/exceptions.py
#
#
#######################################################################################################################
#
# Functions:

class SyncAPIError(Exception):
    """Base exception for sync_api errors."""
    pass

class APIConnectionError(SyncAPIError):
    """Raised for network or connection issues, including timeouts."""
    pass

class APIRequestError(SyncAPIError):
    """Raised when the request payload cannot be built (e.g., records that are not JSON serializable)."""
    pass

class APIResponseError(SyncAPIError):
    """Raised for non-2xx responses or issues parsing the response."""
    def __init__(self, status_code: int, message: str, response_data: dict = None):
        super().__init__(f"API Error {status_code}: {message}")
        self.status_code = status_code
        self.response_data = response_data or {}

class AuthenticationError(SyncAPIError):
    """Raised for authentication failures (HTTP 401)."""
    status_code = 401

#
# End of listbook/sync_api/exceptions.py
########################################################################################################################
