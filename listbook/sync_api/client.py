# listbook/sync_api/client.py
#
#
# Imports
from typing import Optional, Dict, Any, List
#
# 3rd-party Libraries
import httpx
from loguru import logger
from pydantic import ValidationError
#
# Local Imports
from ..Constants import HTTP_REQUEST_TIMEOUT_SECONDS, SYNC_PATH_BEARER, SYNC_PATH_SESSION
from .exceptions import APIConnectionError, APIResponseError, AuthenticationError
from .schemas import SyncListsPayload
from .utils import build_sync_payload, extract_error_detail
#
########################################################################################################################
#
# Functions:

class ListSyncAPIClient:
    """
    Async client for the list sync endpoint.

    Two modes share one client:
      - bearer: the host supplies a token (and usually an API base URL); every
        request carries `Authorization: Bearer <token>` and goes to
        `<api base url>/api/v1/builder/sync`.
      - session: no token; the request goes to `/api/builder/sync` on the
        session origin and authentication rides on the cookie jar.
    """

    def __init__(self,
                 session_base_url: str = "",
                 api_base_url: str = "",
                 timeout: float = HTTP_REQUEST_TIMEOUT_SECONDS,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 cookies: Optional[Dict[str, str]] = None):
        self.session_base_url = (session_base_url or "").rstrip('/')
        self.api_base_url = (api_base_url or "").rstrip('/')
        self.timeout = timeout
        self._transport = transport
        self._cookies = cookies
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
                cookies=self._cookies,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def endpoint_for(self, token: Optional[str] = None, api_base_url: Optional[str] = None) -> str:
        if token:
            base = (api_base_url or self.api_base_url or self.session_base_url).rstrip('/')
            return f"{base}{SYNC_PATH_BEARER}"
        return f"{self.session_base_url}{SYNC_PATH_SESSION}"

    async def _request(
        self,
        method: str,
        url: str,
        token: Optional[str] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        client = await self._get_client()
        headers = {"Authorization": f"Bearer {token}"} if token else None

        try:
            response = await client.request(method, url, json=json_body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            response_data = None
            try:
                response_data = e.response.json()
            except ValueError:
                pass
            error_detail = extract_error_detail(response_data, e.response.reason_phrase or str(e))
            if e.response.status_code == 401:
                raise AuthenticationError(f"Authentication failed: {error_detail}") from e
            raise APIResponseError(e.response.status_code, error_detail, response_data=response_data) from e
        except httpx.RequestError as e:  # ConnectError, TimeoutException, ...
            raise APIConnectionError(f"Connection error to {url}: {e}") from e

        if not response.content:
            return {}
        try:
            data = response.json()
        except ValueError:
            # Undecodable JSON or bytes that are not valid UTF-8
            raise APIResponseError(response.status_code, "Failed to decode JSON response",
                                   response_data={"raw_text": response.text})
        if not isinstance(data, dict):
            raise APIResponseError(response.status_code, "Expected a JSON object in response",
                                   response_data={"raw": data})
        return data

    async def get_lists(self, token: Optional[str] = None, api_base_url: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Fetches the remote collection.

        The body is validated against `SyncListsPayload`, but the raw record dicts
        are returned so unknown fields survive the round trip.
        """
        url = self.endpoint_for(token, api_base_url)
        data = await self._request("GET", url, token=token)
        try:
            SyncListsPayload.model_validate(data)
        except ValidationError as e:
            raise APIResponseError(200, f"Malformed sync payload: {e.error_count()} validation error(s)",
                                   response_data=data) from e
        records = data.get("lists") or []
        logger.debug(f"Fetched {len(records)} remote record(s) from {url}")
        return records

    async def post_lists(self, records: List[Dict[str, Any]], token: Optional[str] = None,
                         api_base_url: Optional[str] = None) -> Dict[str, Any]:
        """Sends the full collection; missing `updated_at` values are backfilled first."""
        url = self.endpoint_for(token, api_base_url)
        payload = build_sync_payload(records)
        result = await self._request("POST", url, token=token, json_body=payload)
        logger.debug(f"Pushed {len(payload['lists'])} record(s) to {url}")
        return result

#
# End of listbook/sync_api/client.py
########################################################################################################################
