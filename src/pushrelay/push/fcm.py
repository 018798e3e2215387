"""Firebase Cloud Messaging transport (HTTP v1 API).

Learn: FCM v1 wants an OAuth2 bearer token. A service account gets one by
signing a short-lived RS256 JWT assertion with its private key and
exchanging it at Google's token endpoint (the "JWT bearer" grant). The
access token lives for an hour; we cache it and refresh a minute early.

Send flow:
1. Get (or refresh) the access token
2. POST {"message": {...}} to /v1/projects/{project}/messages:send
3. 2xx → return the message name; anything else → PushDeliveryError
"""

import asyncio
import time
from typing import Optional

import httpx
import jwt

from pushrelay.config import Settings
from pushrelay.push.base import PushDeliveryError

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME = 3600  # seconds, Google's maximum
TOKEN_REFRESH_MARGIN = 60  # seconds


class FcmTransport:
    """PushTransport delivering through FCM with a service account."""

    def __init__(
        self,
        project_id: str,
        client_email: str,
        private_key: str,
        *,
        endpoint: str = "https://fcm.googleapis.com",
        token_url: str = "https://oauth2.googleapis.com/token",
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.project_id = project_id
        self._client_email = client_email
        self._private_key = private_key
        self._endpoint = endpoint.rstrip("/")
        self._token_url = token_url
        self._http = http or httpx.AsyncClient(timeout=timeout)
        self._access_token: Optional[str] = None
        self._expires_at = 0.0
        self._token_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "FcmTransport":
        return cls(
            settings.fcm_project_id,
            settings.fcm_client_email,
            settings.fcm_private_key,
            endpoint=settings.fcm_endpoint,
            token_url=settings.oauth_token_url,
            timeout=settings.gateway_timeout_seconds,
        )

    @property
    def send_url(self) -> str:
        return f"{self._endpoint}/v1/projects/{self.project_id}/messages:send"

    async def close(self) -> None:
        await self._http.aclose()

    # ─── OAuth ───────────────────────────────────────────

    def _build_assertion(self, now: float) -> str:
        claims = {
            "iss": self._client_email,
            "scope": FCM_SCOPE,
            "aud": self._token_url,
            "iat": int(now),
            "exp": int(now) + ASSERTION_LIFETIME,
        }
        return jwt.encode(claims, self._private_key, algorithm="RS256")

    async def _get_access_token(self) -> str:
        async with self._token_lock:
            now = time.time()
            if self._access_token and now < self._expires_at - TOKEN_REFRESH_MARGIN:
                return self._access_token

            try:
                assertion = self._build_assertion(now)
            except (ValueError, jwt.PyJWTError) as e:
                raise PushDeliveryError(f"Cannot sign service account assertion: {e}")

            try:
                r = await self._http.post(
                    self._token_url,
                    data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
                )
            except httpx.HTTPError as e:
                raise PushDeliveryError(f"Token request failed: {e}")

            if r.status_code != 200:
                raise PushDeliveryError(
                    f"Token request rejected ({r.status_code}): {r.text[:200]}"
                )

            body = r.json()
            self._access_token = body["access_token"]
            self._expires_at = now + float(body.get("expires_in", ASSERTION_LIFETIME))
            return self._access_token

    # ─── Send ────────────────────────────────────────────

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, str],
    ) -> str:
        access_token = await self._get_access_token()
        message = {
            "message": {
                "token": token,
                "notification": {"title": title, "body": body},
                "data": data,
            }
        }

        try:
            r = await self._http.post(
                self.send_url,
                json=message,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            raise PushDeliveryError(f"FCM request failed: {e}")

        if r.status_code == 401:
            # Revoked or expired early; fetch a fresh token next time.
            self._access_token = None

        if not r.is_success:
            status, detail = _error_detail(r)
            raise PushDeliveryError(
                f"FCM rejected message ({r.status_code} {status}): {detail}",
                status=status,
            )

        return r.json().get("name", "")


def _error_detail(r: httpx.Response) -> tuple[str, str]:
    """Pull status/message out of a Google API error body."""
    try:
        error = r.json().get("error", {})
    except ValueError:
        return "UNKNOWN", r.text[:200]
    return error.get("status", "UNKNOWN"), error.get("message", "")
