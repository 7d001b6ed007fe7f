"""Access-token verification against the Supabase auth (GoTrue) REST API."""

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

logger = logging.getLogger("bookmatch.identity")

USER_PATH = "/auth/v1/user"


class AuthenticationError(Exception):
    """Raised when a token is rejected or the identity provider cannot be reached."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


@dataclass(frozen=True)
class VerifiedUser:
    id: str
    email: str | None = None


class IdentityProvider(Protocol):
    async def verify(self, access_token: str) -> VerifiedUser | None:
        """Return the user the token belongs to, or None when no user resolves."""


class SupabaseIdentityClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout_s
        self._transport = transport

    async def verify(self, access_token: str) -> VerifiedUser | None:
        token = access_token.strip()
        if not token:
            raise AuthenticationError("missing access token")

        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {token}",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                resp = await client.get(f"{self._base_url}{USER_PATH}", headers=headers)
        except httpx.TimeoutException as exc:
            raise AuthenticationError("identity provider timed out") from exc
        except httpx.HTTPError as exc:
            raise AuthenticationError(f"identity provider request failed: {exc}") from exc

        if resp.status_code in {401, 403}:
            raise AuthenticationError(_error_reason(resp) or "invalid or expired access token")
        if resp.status_code >= 400:
            logger.warning("identity_provider_error", extra={"status_code": resp.status_code})
            raise AuthenticationError(f"identity provider returned {resp.status_code}")

        try:
            payload = resp.json()
        except ValueError as exc:
            raise AuthenticationError("identity provider returned a malformed user") from exc

        if not isinstance(payload, dict):
            return None
        user_id = payload.get("id")
        if not isinstance(user_id, str) or not user_id:
            return None
        email = payload.get("email")
        return VerifiedUser(id=user_id, email=email if isinstance(email, str) else None)


def _error_reason(resp: httpx.Response) -> str | None:
    try:
        payload = resp.json()
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    for key in ("msg", "message", "error_description", "error"):
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None
