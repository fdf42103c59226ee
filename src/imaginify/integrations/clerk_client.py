"""Async client for the Clerk backend API.

Only the call the ledger needs: writing the local user id into a Clerk
user's public metadata, which is how the page layer learns the buyer
reference it later puts on checkout sessions.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog

from imaginify.config import settings
from imaginify.errors import ConfigurationError, UpstreamError

log = structlog.get_logger()


class ClerkClient:
    """Thin async wrapper over ``PATCH /users/{id}/metadata``."""

    def __init__(
        self,
        base_url: str | None = None,
        secret_key: str | None = None,
        timeout: float | None = None,
    ):
        self._base_url = base_url
        self._secret_key = secret_key
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return (self._base_url or settings.CLERK_API_URL).rstrip("/")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def set_public_metadata(self, clerk_id: str, metadata: dict[str, Any]) -> None:
        """Merge *metadata* into the user's public metadata.

        Clerk merges the payload into the stored metadata, so repeating the
        same call is harmless.

        Raises:
            ConfigurationError: if CLERK_SECRET_KEY is not set.
            UpstreamError: on timeout, connection failure, or a non-2xx reply.
        """
        secret = self._secret_key or settings.CLERK_SECRET_KEY
        if not secret:
            raise ConfigurationError("CLERK_SECRET_KEY is not configured")

        timeout = self._timeout or settings.CLERK_API_TIMEOUT_SECONDS
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(timeout),
                headers={"Authorization": f"Bearer {secret}"},
            ) as client:
                response = await client.patch(
                    f"/users/{clerk_id}/metadata",
                    json={"public_metadata": metadata},
                )
                response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise UpstreamError(
                f"Clerk metadata update timed out after {timeout:g}s"
            ) from exc
        except httpx.HTTPStatusError as exc:
            raise UpstreamError(
                f"Clerk metadata update failed with {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Cannot reach Clerk at {self.base_url}") from exc

        log.info("clerk_metadata_updated", clerk_id=clerk_id, keys=sorted(metadata))


clerk_client = ClerkClient()
