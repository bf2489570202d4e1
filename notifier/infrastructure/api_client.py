"""HTTP client for the DeX API endpoints used by the graduation scheduler."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx
from pydantic import ValidationError

from notifier.domain.entities import UserTask
from notifier.domain.exceptions import UpstreamQueryFailure
from notifier.schemas import UserTaskRead

logger = logging.getLogger(__name__)

EXPECTED_GRADUATION_PATH = "api/UserTask/ExpectedGraduation/{months}"
SET_TO_MAILED_PATH = "api/UserTask/SetToMailed/{task_id}"
TOKEN_PATH = "connect/token"

# Tokens are refreshed slightly before they actually expire.
_TOKEN_EXPIRY_MARGIN_SECONDS = 30.0


class ClientCredentialsTokenProvider:
    """Obtain and cache an access token with the OAuth2 client credentials grant."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        identity_url: str,
        client_id: str,
        client_secret: str,
        scope: str | None = None,
    ) -> None:
        self._http = http
        self._token_url = f"{identity_url.rstrip('/')}/{TOKEN_PATH}"
        self._client_id = client_id
        self._client_secret = client_secret
        self._scope = scope
        self._token: str | None = None
        self._expires_at = 0.0

    async def get_token(self) -> str:
        """Return a valid access token, requesting a new one when needed."""

        if self._token and time.monotonic() < self._expires_at:
            return self._token

        form = {
            "grant_type": "client_credentials",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
        }
        if self._scope:
            form["scope"] = self._scope

        try:
            response = await self._http.post(self._token_url, data=form)
        except httpx.RequestError as exc:
            raise UpstreamQueryFailure(f"Identity server unreachable: {exc}") from exc

        if response.status_code // 100 != 2:
            raise UpstreamQueryFailure(
                f"Identity server rejected the token request with status {response.status_code}",
                status_code=response.status_code,
            )

        try:
            document = response.json()
            token = document["access_token"]
        except (ValueError, KeyError, TypeError) as exc:
            raise UpstreamQueryFailure("Identity server returned an invalid token response") from exc

        expires_in = float(document.get("expires_in") or 3600)
        self._token = str(token)
        self._expires_at = time.monotonic() + max(
            expires_in - _TOKEN_EXPIRY_MARGIN_SECONDS, 0.0
        )
        return self._token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0


class DexApiClient:
    """Query expected graduations and acknowledge handled user tasks."""

    def __init__(
        self,
        http: httpx.AsyncClient,
        *,
        token_provider: ClientCredentialsTokenProvider | None = None,
    ) -> None:
        self._http = http
        self._token_provider = token_provider

    @classmethod
    def create(
        cls,
        api_url: str,
        *,
        timeout: float = 30.0,
        identity_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        scope: str | None = None,
    ) -> "DexApiClient":
        """Build a client owning its own :class:`httpx.AsyncClient`."""

        http = httpx.AsyncClient(base_url=api_url.rstrip("/") + "/", timeout=timeout)
        token_provider = None
        if identity_url:
            token_provider = ClientCredentialsTokenProvider(
                http,
                identity_url=identity_url,
                client_id=client_id or "",
                client_secret=client_secret or "",
                scope=scope,
            )
        return cls(http, token_provider=token_provider)

    async def __aenter__(self) -> "DexApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def get_expected_graduation_users(self, time_range_months: int) -> list[UserTask]:
        """Return the open graduation tasks due within ``time_range_months``."""

        response = await self._request(
            "GET", EXPECTED_GRADUATION_PATH.format(months=time_range_months)
        )
        try:
            document = response.json()
        except ValueError as exc:
            raise UpstreamQueryFailure("DeX API returned a non JSON body") from exc

        if document is None:
            return []
        if not isinstance(document, list):
            raise UpstreamQueryFailure("DeX API returned an unexpected user task payload")

        try:
            tasks = [UserTaskRead.model_validate(item).to_entity() for item in document]
        except ValidationError as exc:
            raise UpstreamQueryFailure(f"DeX API returned invalid user tasks: {exc}") from exc

        logger.debug("DeX API returned %s expected graduation task(s)", len(tasks))
        return tasks

    async def set_graduation_task_status_to_mailed(self, task_id: int) -> None:
        """Mark the user task ``task_id`` as mailed."""

        await self._request("PUT", SET_TO_MAILED_PATH.format(task_id=task_id))

    async def _request(self, method: str, path: str) -> httpx.Response:
        response = await self._send(method, path)
        if response.status_code == 401 and self._token_provider is not None:
            # Retry once with a fresh token.
            self._token_provider.invalidate()
            response = await self._send(method, path)

        if response.status_code // 100 != 2:
            raise UpstreamQueryFailure(
                f"DeX API {method} {path} failed with status {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def _send(self, method: str, path: str) -> httpx.Response:
        headers: dict[str, Any] = {"Accept": "application/json"}
        if self._token_provider is not None:
            headers["Authorization"] = f"Bearer {await self._token_provider.get_token()}"
        try:
            return await self._http.request(method, path, headers=headers)
        except httpx.RequestError as exc:
            raise UpstreamQueryFailure(f"DeX API unreachable: {exc}") from exc


__all__ = ["ClientCredentialsTokenProvider", "DexApiClient"]
