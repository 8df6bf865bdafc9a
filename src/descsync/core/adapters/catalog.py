"""HTTP client for the central data catalog API."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Sequence

import httpx

from descsync.core.adapters.http import DEFAULT_TIMEOUT, decode_json, send_with_retry
from descsync.core.assets import CatalogAsset
from descsync.core.errors import AuthError, CatalogAPIError, MalformedResponseError
from descsync.core.hierarchy import MAX_IDS_PER_REQUEST, AssetPage

logger = logging.getLogger(__name__)

TOKEN_SCOPE = "api.quollio.com/beta:admin"
TOKEN_EXPIRY_MARGIN_SECONDS = 60


class CatalogClient:
    """
    Catalog API client authenticated with OAuth2 client credentials.

    The access token is cached and refreshed shortly before it expires.
    The client is safe to share between worker threads.

    Args:
        base_url: Catalog API base URL, without trailing slash.
        client_id: OAuth2 client identifier.
        client_secret: OAuth2 client secret.
        http: Optional preconfigured httpx client (tests pass a MockTransport).
        sleep: Sleep function used between retries.
    """

    def __init__(
        self,
        base_url: str,
        client_id: str,
        client_secret: str,
        *,
        http: httpx.Client | None = None,
        max_retries: int | None = None,
        sleep: Callable[[float], Any] = time.sleep,
    ):
        self.base_url = base_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.http = http or httpx.Client(timeout=DEFAULT_TIMEOUT)
        self._retry_kwargs: dict[str, Any] = {"sleep": sleep}
        if max_retries is not None:
            self._retry_kwargs["max_retries"] = max_retries
        self._token: str | None = None
        self._token_expires_at = 0.0
        self._token_lock = threading.Lock()

    def close(self) -> None:
        self.http.close()

    def get_access_token(self) -> str:
        """Return a valid bearer token, requesting a new one when needed."""
        with self._token_lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token

            response = send_with_retry(
                lambda: self.http.post(
                    f"{self.base_url}/oauth2/token",
                    data={
                        "grant_type": "client_credentials",
                        "client_id": self.client_id,
                        "scope": TOKEN_SCOPE,
                    },
                    auth=(self.client_id, self.client_secret),
                ),
                **self._retry_kwargs,
            )
            if response.status_code != 200:
                raise AuthError(
                    f"Failed to get a catalog access token: HTTP {response.status_code}"
                )
            body = decode_json(response, "token request")
            token = body.get("access_token") if isinstance(body, dict) else None
            if not token:
                raise AuthError("Catalog token response has no access_token.")

            expires_in = body.get("expires_in") or 0
            self._token = token
            self._token_expires_at = time.monotonic() + max(
                int(expires_in) - TOKEN_EXPIRY_MARGIN_SECONDS, 0
            )
            logger.debug("Obtained catalog access token. expires_in: %s", expires_in)
            return token

    def _post(self, path: str, payload: dict[str, Any]) -> Any:
        url = f"{self.base_url}{path}"
        token = self.get_access_token()
        response = send_with_retry(
            lambda: self.http.post(
                url,
                json=payload,
                headers={"Authorization": f"Bearer {token}"},
            ),
            **self._retry_kwargs,
        )
        if response.status_code != 200:
            raise CatalogAPIError(
                f"Catalog request failed with status {response.status_code}",
                status=response.status_code,
                context=path,
            )
        return decode_json(response, path)

    @staticmethod
    def _parse_assets(body: Any, context: str) -> list[CatalogAsset]:
        if not isinstance(body, dict):
            raise MalformedResponseError(f"Response to {context} must be an object.")
        data = body.get("data") or []
        if not isinstance(data, list):
            raise MalformedResponseError(f"Response to {context} has a non-list `data`.")
        return [CatalogAsset.from_api(item) for item in data]

    def get_assets_by_type(self, object_type: str, last_id: str) -> AssetPage:
        """Return one page of assets of `object_type` after the cursor `last_id`."""
        body = self._post("/v2/assets/type", {"last_id": last_id, "object_type": object_type})
        assets = self._parse_assets(body, "/v2/assets/type")
        next_id = body.get("last_id") or ""
        if not isinstance(next_id, str):
            raise MalformedResponseError("Response to /v2/assets/type has a non-string `last_id`.")
        return AssetPage(assets=assets, last_id=next_id)

    def get_assets_by_ids(self, ids: Sequence[str]) -> list[CatalogAsset]:
        """Return the assets for the given identifiers."""
        if len(ids) > MAX_IDS_PER_REQUEST:
            raise ValueError(f"At most {MAX_IDS_PER_REQUEST} ids per request, got {len(ids)}")
        body = self._post("/v2/assets/ids", {"ids": list(ids)})
        return self._parse_assets(body, "/v2/assets/ids")
