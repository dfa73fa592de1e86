# Host_Bridge.py
# Description: Hooks the sync engine uses to talk to the embedding host (token, API origin, refresh).
#
# Imports
from typing import Callable, Optional
#
# 3rd-Party Imports
from loguru import logger
#
########################################################################################################################
#
# Classes:

class HostBridge:
    """
    Default bridge for a host that supplies nothing: session (cookie) mode,
    no refresh channel, no auth-failure hook.

    Subclass and override what the host provides. The engine only calls these
    methods; the host answers a refresh request by calling
    `ListSyncEngine.complete_token_refresh(success)`.
    """

    def get_access_token(self) -> Optional[str]:
        return None

    def get_api_base_url(self) -> Optional[str]:
        return None

    def request_token_refresh(self) -> bool:
        """Asks the host to refresh its token. Returns False when there is no refresh channel."""
        return False

    def on_auth_failure(self) -> None:
        pass


class CallbackHostBridge(HostBridge):
    """Adapts plain callables to the bridge interface. Any callable may be omitted."""

    def __init__(self,
                 get_access_token: Optional[Callable[[], Optional[str]]] = None,
                 get_api_base_url: Optional[Callable[[], Optional[str]]] = None,
                 request_token_refresh: Optional[Callable[[], Optional[bool]]] = None,
                 on_auth_failure: Optional[Callable[[], None]] = None):
        self._get_access_token = get_access_token
        self._get_api_base_url = get_api_base_url
        self._request_token_refresh = request_token_refresh
        self._on_auth_failure = on_auth_failure

    def get_access_token(self) -> Optional[str]:
        return self._get_access_token() if self._get_access_token else None

    def get_api_base_url(self) -> Optional[str]:
        return self._get_api_base_url() if self._get_api_base_url else None

    def request_token_refresh(self) -> bool:
        if self._request_token_refresh is None:
            return False
        # A callback that returns None is treated as "request sent"
        return self._request_token_refresh() is not False

    def on_auth_failure(self) -> None:
        if self._on_auth_failure is not None:
            logger.debug("Invoking host auth-failure callback.")
            self._on_auth_failure()

#
# End of Host_Bridge.py
########################################################################################################################
