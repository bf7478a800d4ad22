import json
import logging
import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from app.core.config import get_settings
from app.core.exceptions import (
    OLXAPIError,
    OLXAuthenticationError,
    OLXNotFoundError,
    OLXValidationError,
    TransientAPIError,
)

logger = logging.getLogger(__name__)

# async (force_refresh: bool) -> bearer token
TokenProvider = Callable[[bool], Awaitable[str]]

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class OLXClient:
    """
    Purpose: async client for the OLX.ba marketplace REST API.

    Functionality:
        - Categories, category attributes, cities/locations (taxonomy sync).
        - Listing management: create, update, publish, unpublish, delete, image upload.
        - Paging through a user's listings and fetching listing details (pull sync).
        - One base request method (_make_request) that maps HTTP failures onto typed
          errors, retries transient failures with exponential backoff and, when a
          token provider is attached, re-authenticates once on 401/403.

    Documentation: https://api.olx.ba/docs
    """

    def __init__(
        self,
        token_provider: Optional[TokenProvider] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.settings = get_settings()
        self.token_provider = token_provider
        self.BASE_URL = (base_url or self.settings.OLX_BASE_URL).rstrip("/")
        self.timeout = timeout or self.settings.OLX_REQUEST_TIMEOUT
        self.max_attempts = max(1, self.settings.OLX_RETRY_ATTEMPTS)
        self._token: Optional[str] = None

    def _get_headers(self, token: Optional[str] = None, json_body: bool = True) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if json_body:
            headers["Content-Type"] = "application/json"
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _current_token(self, force_refresh: bool = False) -> Optional[str]:
        if self.token_provider is None:
            return None
        if force_refresh or not self._token:
            self._token = await self.token_provider(force_refresh)
        return self._token

    def backoff_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        """Delay before retry number ``attempt`` (1-based), capped at OLX_RETRY_MAX_DELAY."""
        s = self.settings
        delay = s.OLX_RETRY_BASE_DELAY * (s.OLX_RETRY_MULTIPLIER ** (attempt - 1))
        if retry_after is not None:
            delay = max(delay, retry_after)
        return min(delay, s.OLX_RETRY_MAX_DELAY)

    @staticmethod
    def _retry_after(response: httpx.Response) -> Optional[float]:
        value = response.headers.get("Retry-After")
        if not value:
            return None
        try:
            return max(0.0, float(value))
        except ValueError:
            # HTTP-date form; fall back to our own backoff
            return None

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or f"HTTP {response.status_code}"

        if not isinstance(data, dict):
            return str(data)
        if data.get("message"):
            return str(data["message"])
        if data.get("error"):
            return str(data["error"])
        errors = data.get("errors")
        if isinstance(errors, dict):
            parts = []
            for field, messages in errors.items():
                if isinstance(messages, list):
                    messages = "; ".join(str(m) for m in messages)
                parts.append(f"{field}: {messages}")
            return ", ".join(parts)
        if isinstance(errors, list) and errors:
            return str(errors[0])
        return "Unknown error"

    def _handle_response(self, response: httpx.Response, endpoint: str) -> Any:
        status = response.status_code
        if status in (200, 201, 202):
            if not response.content:
                return {}
            try:
                return response.json()
            except ValueError:
                logger.error(f"[OLX API] Failed to parse response from {endpoint}: {response.text[:500]}")
                raise OLXAPIError("Invalid response from OLX API", status_code=status)
        if status == 204:
            return {}

        message = self._error_message(response)
        payload = None
        try:
            payload = response.json()
        except ValueError:
            pass

        if status in (401, 403):
            logger.error(f"[OLX API] Authentication error on {endpoint}: {message}")
            raise OLXAuthenticationError(message, status_code=status, payload=payload)
        if status == 404:
            logger.error(f"[OLX API] Not found on {endpoint}: {message}")
            raise OLXNotFoundError(message, status_code=status, payload=payload)
        if status == 422:
            logger.error(f"[OLX API] Validation error on {endpoint}: {message}")
            raise OLXValidationError(message, status_code=status, payload=payload)
        if status in RETRYABLE_STATUS:
            logger.warning(f"[OLX API] Transient error on {endpoint}: {status} - {message}")
            raise TransientAPIError(f"API request failed ({status}): {message}", status_code=status, payload=payload)

        logger.error(f"[OLX API] Request failed on {endpoint}: {status} - {message}")
        raise OLXAPIError(f"API request failed ({status}): {message}", status_code=status, payload=payload)

    async def _send(self, method: str, url: str, **kwargs) -> httpx.Response:
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.request(method=method, url=url, **kwargs)

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None,
        files: Optional[Dict] = None,
        authenticated: bool = True,
    ) -> Any:
        """
        Make a request to the OLX API

        Raises:
            OLXAuthenticationError: 401/403 (after one re-authentication when possible)
            OLXNotFoundError: 404
            OLXValidationError: 422
            TransientAPIError: 429/5xx/network errors once retries are exhausted
            OLXAPIError: anything else
        """
        url = f"{self.BASE_URL}/{endpoint.lstrip('/')}"
        reauthenticated = False
        attempt = 0

        if data:
            logger.debug(f"[OLX API] {method} {url} body: {json.dumps(data, default=str)[:500]}")
        else:
            logger.debug(f"[OLX API] {method} {url} params: {params}")

        while True:
            attempt += 1
            token = await self._current_token() if authenticated else None
            kwargs: Dict[str, Any] = {"headers": self._get_headers(token, json_body=files is None), "params": params}
            if files is not None:
                kwargs["files"] = files
            elif data is not None:
                kwargs["json"] = data

            retry_after = None
            try:
                response = await self._send(method, url, **kwargs)
                if (
                    response.status_code in (401, 403)
                    and authenticated
                    and self.token_provider is not None
                    and not reauthenticated
                ):
                    logger.info(f"[OLX API] {response.status_code} on {endpoint}, re-authenticating once")
                    reauthenticated = True
                    await self._current_token(force_refresh=True)
                    attempt -= 1
                    continue
                return self._handle_response(response, endpoint)
            except TransientAPIError as e:
                error = e
                retry_after = self._retry_after(response)
            except httpx.RequestError as e:
                error = TransientAPIError(f"Network error on {endpoint}: {e}")
                logger.warning(f"[OLX API] Network error on {endpoint}: {e}")

            if attempt >= self.max_attempts:
                logger.error(f"[OLX API] Giving up on {method} {endpoint} after {attempt} attempts")
                raise error

            delay = self.backoff_delay(attempt, retry_after)
            logger.info(f"[OLX API] Retry {attempt}/{self.max_attempts - 1} for {endpoint} in {delay:.1f}s")
            await asyncio.sleep(delay)

    async def get(self, endpoint: str, params: Optional[Dict] = None) -> Any:
        return await self._make_request("GET", endpoint, params=params)

    # Auth

    async def login(self, username: str, password: str, device_name: Optional[str] = None) -> Dict:
        """POST /auth/login. Returns the raw body ({"token": ..., "user": {...}})."""
        body = {
            "username": username,
            "password": password,
            "device_name": device_name or self.settings.OLX_DEVICE_NAME,
        }
        return await self._make_request("POST", "/auth/login", data=body, authenticated=False)

    # Taxonomy

    async def get_categories(self) -> Any:
        return await self._make_request("GET", "/categories")

    async def get_category(self, category_id: int) -> Any:
        return await self._make_request("GET", f"/categories/{category_id}")

    async def get_category_attributes(self, category_id: int) -> Any:
        return await self._make_request("GET", f"/categories/{category_id}/attributes")

    async def get_cities(self) -> Any:
        return await self._make_request("GET", "/cities")

    async def get_locations(self) -> Any:
        return await self._make_request("GET", "/locations")

    # Listings

    async def get_user_listings(self, user_name: str, page: int = 1, per_page: Optional[int] = None) -> Any:
        params = {"page": page, "per_page": per_page or self.settings.OLX_LISTINGS_PER_PAGE}
        return await self._make_request("GET", f"/users/{user_name}/listings", params=params)

    async def get_listing(self, listing_id) -> Any:
        return await self._make_request("GET", f"/listings/{listing_id}")

    async def create_listing(self, listing_data: Dict) -> Any:
        return await self._make_request("POST", "/listings", data=listing_data)

    async def update_listing(self, listing_id, listing_data: Dict) -> Any:
        return await self._make_request("PUT", f"/listings/{listing_id}", data=listing_data)

    async def publish_listing(self, listing_id) -> Any:
        return await self._make_request("POST", f"/listings/{listing_id}/publish")

    async def unpublish_listing(self, listing_id) -> Any:
        return await self._make_request("POST", f"/listings/{listing_id}/unpublish")

    async def delete_listing(self, listing_id) -> Any:
        return await self._make_request("DELETE", f"/listings/{listing_id}")

    async def upload_image(self, listing_id, filename: str, content: bytes, content_type: str = "image/jpeg") -> Any:
        files = {"image": (filename, content, content_type)}
        return await self._make_request("POST", f"/listings/{listing_id}/image-upload", files=files)


def unwrap_data(body: Any) -> Any:
    """OLX wraps most payloads in {"data": ...}; return the inner value."""
    if isinstance(body, dict) and "data" in body:
        return body["data"]
    return body
