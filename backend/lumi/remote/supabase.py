"""Remote store speaking the Supabase REST (PostgREST) and Auth (GoTrue) APIs."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from ..errors import AuthError, InvalidCredentialsError, RecordValidationError, TransportError
from ..models import Badge, normalize_username, resolve_badge_emoji, validate_badge_name
from .base import INVALID_CREDENTIALS_MESSAGE, credential_email

logger = logging.getLogger(__name__)

NOT_FOUND_CODE = "PGRST116"
SINGLE_OBJECT_MEDIA_TYPE = "application/vnd.pgrst.object+json"


class SupabaseRemoteStore:
    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        email_domain: str = "lumi.local",
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._anon_key = anon_key
        self._email_domain = email_domain
        self._client = client or httpx.AsyncClient(base_url=url.rstrip("/"), timeout=timeout_seconds)
        self._owns_client = client is None
        self._access_token: Optional[str] = None
        self._auth_user_id: Optional[str] = None

    @property
    def auth_user_id(self) -> Optional[str]:
        return self._auth_user_id

    async def resolve_or_create_user(self, username: str) -> str:
        normalized = normalize_username(username)
        response = await self._request(
            "resolve_or_create_user",
            "POST",
            "/rest/v1/rpc/get_or_create_user",
            json={"p_username": normalized},
        )
        _raise_for_status("resolve_or_create_user", response)
        user_id = _json(response)
        if not isinstance(user_id, str) or not user_id:
            raise TransportError("resolve_or_create_user returned an unexpected payload.")
        return user_id

    async def sign_in_or_register(self, username: str, credential: str) -> str:
        normalized = normalize_username(username)
        if not credential or not credential.strip():
            raise RecordValidationError("Credential cannot be empty.")
        email = credential_email(normalized, self._email_domain)

        try:
            payload = await self._sign_in(email, credential)
        except InvalidCredentialsError:
            logger.info("No matching account for %s; registering", normalized)
            payload = await self._sign_up(email, credential, normalized)

        user = payload.get("user") if isinstance(payload.get("user"), dict) else None
        if user is None and "id" in payload:
            user = payload
        if not user or not user.get("id"):
            raise AuthError("Authentication did not return a user.")

        self._access_token = payload.get("access_token")
        self._auth_user_id = str(user["id"])
        return await self.resolve_or_create_user(normalized)

    async def sign_out(self) -> None:
        if self._access_token is None:
            return
        try:
            response = await self._request("sign_out", "POST", "/auth/v1/logout")
            _raise_for_status("sign_out", response)
        finally:
            self._access_token = None
            self._auth_user_id = None

    async def insert_badge(
        self,
        user_id: str,
        name: str,
        emoji: str,
        earned_at: Optional[datetime] = None,
    ) -> None:
        row = {
            "user_id": user_id,
            "badge_name": validate_badge_name(name),
            "badge_emoji": resolve_badge_emoji(emoji),
            "earned_at": (earned_at or datetime.now(timezone.utc)).isoformat(),
        }
        response = await self._request(
            "insert_badge",
            "POST",
            "/rest/v1/badges",
            json=[row],
            headers={"Prefer": "return=minimal"},
        )
        _raise_for_status("insert_badge", response)

    async def list_badges(self, user_id: str) -> List[Badge]:
        response = await self._request(
            "list_badges",
            "GET",
            "/rest/v1/badges",
            params={
                "select": "badge_name,badge_emoji,earned_at",
                "user_id": f"eq.{user_id}",
                "order": "earned_at.asc,id.asc",
            },
        )
        _raise_for_status("list_badges", response)
        rows = _json(response)
        if not isinstance(rows, list):
            raise TransportError("list_badges returned an unexpected payload.")
        try:
            return [
                Badge(name=row["badge_name"], emoji=row.get("badge_emoji") or "", earned_at=row.get("earned_at"))
                for row in rows
            ]
        except (KeyError, TypeError, ValidationError) as exc:
            raise TransportError(f"list_badges returned malformed rows: {exc}") from exc

    async def find_user_id(self, username: str) -> Optional[str]:
        normalized = normalize_username(username)
        response = await self._request(
            "find_user_id",
            "GET",
            "/rest/v1/users",
            params={"select": "id", "username": f"eq.{normalized}"},
            headers={"Accept": SINGLE_OBJECT_MEDIA_TYPE},
        )
        if response.status_code == 406 and _error_fields(response).get("code") == NOT_FOUND_CODE:
            return None
        _raise_for_status("find_user_id", response)
        row = _json(response)
        if not isinstance(row, dict) or not row.get("id"):
            raise TransportError("find_user_id returned an unexpected payload.")
        return str(row["id"])

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _sign_in(self, email: str, credential: str) -> Dict[str, Any]:
        response = await self._request(
            "sign_in",
            "POST",
            "/auth/v1/token",
            params={"grant_type": "password"},
            json={"email": email, "password": credential},
        )
        if response.status_code in (400, 401):
            fields = _error_fields(response)
            message = " ".join(str(fields.get(key, "")) for key in ("error_description", "msg", "message"))
            if INVALID_CREDENTIALS_MESSAGE in message or fields.get("error_code") == "invalid_credentials":
                raise InvalidCredentialsError(INVALID_CREDENTIALS_MESSAGE)
        _raise_for_auth_status("sign_in", response)
        return _json_object(response)

    async def _sign_up(self, email: str, credential: str, username: str) -> Dict[str, Any]:
        response = await self._request(
            "sign_up",
            "POST",
            "/auth/v1/signup",
            json={"email": email, "password": credential, "data": {"username": username}},
        )
        _raise_for_auth_status("sign_up", response)
        return _json_object(response)

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        token = self._access_token or self._anon_key
        merged = {"apikey": self._anon_key, "Authorization": f"Bearer {token}"}
        if headers:
            merged.update(headers)
        try:
            return await self._client.request(method, path, headers=merged, **kwargs)
        except httpx.TimeoutException as exc:
            raise TransportError(f"{operation} timed out") from exc
        except httpx.HTTPError as exc:
            raise TransportError(f"{operation} failed: {exc}") from exc


def _json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as exc:
        raise TransportError(f"Remote returned invalid JSON (status {response.status_code}).") from exc


def _json_object(response: httpx.Response) -> Dict[str, Any]:
    payload = _json(response)
    if not isinstance(payload, dict):
        raise TransportError("Remote returned an unexpected payload.")
    return payload


def _error_fields(response: httpx.Response) -> Dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def _describe(response: httpx.Response) -> str:
    fields = _error_fields(response)
    detail = fields.get("message") or fields.get("msg") or fields.get("error_description") or fields.get("error")
    return f"status {response.status_code}" + (f": {detail}" if detail else "")


def _raise_for_status(operation: str, response: httpx.Response) -> None:
    if response.is_success:
        return
    status = response.status_code
    if status in (400, 422):
        raise RecordValidationError(f"{operation} rejected ({_describe(response)})")
    if status in (401, 403):
        raise AuthError(f"{operation} not authorised ({_describe(response)})")
    raise TransportError(f"{operation} failed ({_describe(response)})")


def _raise_for_auth_status(operation: str, response: httpx.Response) -> None:
    if response.is_success:
        return
    if 400 <= response.status_code < 500 and response.status_code not in (408, 429):
        raise AuthError(f"{operation} rejected ({_describe(response)})")
    raise TransportError(f"{operation} failed ({_describe(response)})")


__all__ = ["NOT_FOUND_CODE", "SupabaseRemoteStore"]
