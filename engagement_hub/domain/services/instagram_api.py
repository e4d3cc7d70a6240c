"""
Instagram Graph API client

Thin async wrapper over the few Graph endpoints the workers need, guarded by
the per-platform circuit breaker. Every non-2xx answer becomes a
PlatformAPIError carrying the Graph error message.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import httpx

from engagement_hub.core.circuit_breaker import get_graph_api_circuit_breaker
from engagement_hub.core.config import Settings, settings as default_settings
from engagement_hub.core.exceptions import PlatformAPIError, ServiceTimeoutError
from engagement_hub.core.logging import get_logger
from engagement_hub.db.compat import utcnow
from engagement_hub.db.models.social_media_account import SocialMediaAccount

logger = get_logger(__name__)

MEDIA_FIELDS = "id,caption,media_type,media_product_type,permalink,timestamp,like_count,comments_count"
LONG_LIVED_TOKEN_LIFETIME = timedelta(days=60)


@dataclass(frozen=True)
class RefreshedToken:
    access_token: str
    expires_at: datetime


class InstagramGraphClient:
    """Graph API calls made on behalf of one connected account"""

    def __init__(
        self,
        account: SocialMediaAccount,
        config: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.account = account
        self.config = config or default_settings
        self._transport = transport
        self._circuit_breaker = get_graph_api_circuit_breaker(self.platform)

    @property
    def platform(self) -> str:
        return getattr(self.account.platform, "value", self.account.platform) or "instagram"

    async def _get(self, operation: str, path: str, params: dict[str, Any] | None = None,
                   bearer: bool = True) -> dict[str, Any]:
        if not self.account.access_token:
            raise PlatformAPIError("account has no access token", platform=self.platform,
                                   details={"operation": operation})

        headers = {"Authorization": f"Bearer {self.account.access_token}"} if bearer else {}
        timeout = self.config.GRAPH_API_TIMEOUT_SECONDS

        async def _request() -> dict[str, Any]:
            async with httpx.AsyncClient(
                base_url=self.config.GRAPH_API_BASE_URL,
                timeout=timeout,
                transport=self._transport,
            ) as client:
                try:
                    response = await client.get(path, params=params, headers=headers)
                except httpx.TimeoutException:
                    raise ServiceTimeoutError(f"{self.platform}_graph_api", timeout)
                if response.status_code >= 400:
                    raise PlatformAPIError.from_response(operation, response, platform=self.platform)
                return response.json()

        return await self._circuit_breaker.execute(_request)

    async def get_media(self, media_id: str) -> dict[str, Any]:
        """Media details: caption, type, permalink, like and comment counts"""
        data = await self._get("get_media", f"/{media_id}", params={"fields": MEDIA_FIELDS})
        logger.debug(
            "Fetched media from Graph API",
            extra_data={"account_id": self.account.id, "media_id": media_id},
        )
        return data

    async def refresh_long_lived_token(self) -> RefreshedToken:
        """
        Exchange the current long-lived token for a fresh one.

        Instagram only accepts tokens that are at least 24 hours old and not
        yet expired; a refreshed token is valid for another 60 days.
        """
        data = await self._get(
            "refresh_access_token",
            "/refresh_access_token",
            params={"grant_type": "ig_refresh_token", "access_token": self.account.access_token},
            bearer=False,
        )
        token = data.get("access_token")
        if not token:
            raise PlatformAPIError(
                "refresh response without access_token",
                platform=self.platform,
                details={"operation": "refresh_access_token"},
            )
        expires_in = data.get("expires_in")
        lifetime = timedelta(seconds=int(expires_in)) if expires_in else LONG_LIVED_TOKEN_LIFETIME
        return RefreshedToken(access_token=token, expires_at=utcnow() + lifetime)
