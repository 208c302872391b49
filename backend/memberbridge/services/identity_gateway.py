"""WordPress + PaidMembershipsPro identity gateway."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from memberbridge.core.exceptions import UpstreamUnavailableError

logger = logging.getLogger(__name__)

TOKEN_PATH = "/wp-json/jwt-auth/v1/token"
CURRENT_USER_PATH = "/wp-json/wp/v2/users/me"
MEMBER_PATH = "/wp-json/pmpro/v1/members/{user_id}"


@dataclass(frozen=True)
class IdentityUser:
    """A WordPress account as seen through the REST API"""
    id: int
    username: str
    email: str
    display_name: str

    @classmethod
    def from_wp(cls, data: Dict[str, Any], token_body: Optional[Dict[str, Any]] = None) -> "IdentityUser":
        """
        Build from a /users/me body.

        Fields missing there (view context omits email and username) are
        taken from the JWT-auth token response.
        """
        token_body = token_body or {}
        return cls(
            id=int(data["id"]),
            username=str(
                data.get("username") or token_body.get("user_nicename") or data.get("slug") or ""
            ),
            email=str(data.get("email") or token_body.get("user_email") or ""),
            display_name=str(
                data.get("name") or token_body.get("user_display_name") or data.get("display_name") or ""
            ),
        )


class WordPressIdentityGateway:
    """
    Credential verification and entitlement lookups against WordPress.

    Every request carries a bounded timeout. Timeouts, connection failures
    and 5xx responses raise UpstreamUnavailableError; idempotent reads are
    retried a bounded number of times with exponential backoff first.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 5.0,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        self._api_key = api_key
        self.max_retries = max(0, max_retries)
        self.backoff_seconds = backoff_seconds
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout),
            headers=headers,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def _site_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise UpstreamUnavailableError("wordpress", f"WordPress request timed out: {path}") from exc
        except httpx.TransportError as exc:
            raise UpstreamUnavailableError("wordpress", f"WordPress unreachable: {exc}") from exc
        if response.status_code >= 500:
            raise UpstreamUnavailableError(
                "wordpress", f"WordPress returned {response.status_code} for {path}"
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            logger.warning("WordPress returned a non-JSON body for %s", response.request.url)
            return None

    def _get_with_retry(
        self,
        path: str,
        headers: Optional[Dict[str, str]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        attempt = 0
        while True:
            try:
                return self._send("GET", path, headers=headers, params=params)
            except UpstreamUnavailableError as exc:
                if attempt >= self.max_retries:
                    logger.error("WordPress GET %s failed after %s attempts: %s", path, attempt + 1, exc.message)
                    raise
                delay = self.backoff_seconds * (2 ** attempt)
                attempt += 1
                logger.warning("WordPress GET %s failed (%s), retry %s in %.2fs", path, exc.message, attempt, delay)
                time.sleep(delay)

    def authenticate(self, username: str, password: str) -> Optional[IdentityUser]:
        """
        Verify credentials with the WordPress JWT-auth plugin.

        The profile is read in edit context, which carries email and
        username; if the site refuses that, the view context is used and the
        token response fills the gaps.

        Returns:
            Optional[IdentityUser]: The account, or None for bad credentials
        """
        credentials = {"username": username, "password": password}
        response = self._send("POST", TOKEN_PATH, json=credentials)
        if response.status_code in (400, 415):
            # Some JWT plugins only accept form-encoded bodies
            response = self._send("POST", TOKEN_PATH, data=credentials)
        if response.status_code != 200:
            logger.info("WordPress rejected credentials (status %s)", response.status_code)
            return None

        body = self._json(response)
        wp_token = body.get("token") if isinstance(body, dict) else None
        if not wp_token:
            return None

        auth_headers = {"Authorization": f"Bearer {wp_token}"}
        me = self._get_with_retry(CURRENT_USER_PATH, headers=auth_headers, params={"context": "edit"})
        if me.status_code in (401, 403):
            me = self._get_with_retry(CURRENT_USER_PATH, headers=auth_headers)
        if me.status_code != 200:
            logger.warning("WordPress issued a token but /users/me returned %s", me.status_code)
            return None
        data = self._json(me)
        if not isinstance(data, dict) or "id" not in data:
            return None
        return IdentityUser.from_wp(data, token_body=body)

    def get_member_info(self, user_id: int) -> Optional[Dict[str, Any]]:
        response = self._get_with_retry(MEMBER_PATH.format(user_id=user_id), headers=self._site_headers())
        if response.status_code != 200:
            return None
        data = self._json(response)
        return data if isinstance(data, dict) else None

    def has_active_membership(self, user_id: int) -> bool:
        member = self.get_member_info(user_id)
        return bool(member) and member.get("status") == "active"
