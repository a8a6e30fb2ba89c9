"""Supabase GoTrue client.

Talks to the hosted auth service at ``{SUPABASE_URL}/auth/v1`` over the
app's shared httpx client. Sessions returned by GoTrue are kept in the
signed session cookie by the server; nothing is stored here.
"""
from __future__ import annotations
import base64
import hashlib
import logging
import secrets
from typing import Any, Dict, Optional, TypedDict
from urllib.parse import urlencode

import httpx

from .errors import AuthError
from .infra.timings import timeit

logger = logging.getLogger(__name__)


class AuthUser(TypedDict):
    id: str
    email: str
    full_name: str
    user_metadata: Dict[str, Any]


class AuthSession(TypedDict):
    access_token: str
    refresh_token: str
    expires_in: int
    user: AuthUser


def _to_user(raw: Dict[str, Any]) -> AuthUser:
    meta = raw.get("user_metadata") or {}
    return {
        "id": raw["id"],
        "email": raw.get("email") or "",
        "full_name": meta.get("full_name") or meta.get("name") or "",
        "user_metadata": meta,
    }


def _to_session(raw: Dict[str, Any]) -> AuthSession:
    return {
        "access_token": raw["access_token"],
        "refresh_token": raw.get("refresh_token", ""),
        "expires_in": int(raw.get("expires_in", 3600)),
        "user": _to_user(raw["user"]),
    }


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text or f"auth error {resp.status_code}"
    return (
        body.get("error_description")
        or body.get("msg")
        or body.get("message")
        or body.get("error")
        or f"auth error {resp.status_code}"
    )


def pkce_pair() -> tuple[str, str]:
    # (code_verifier, code_challenge) for the S256 method
    verifier = secrets.token_urlsafe(48)
    digest = hashlib.sha256(verifier.encode()).digest()
    challenge = base64.urlsafe_b64encode(digest).rstrip(b"=").decode()
    return verifier, challenge


class SupabaseAuth:
    def __init__(self, http: httpx.AsyncClient, url: str, anon_key: str):
        self.http = http
        self.base = url.rstrip("/") + "/auth/v1"
        self.anon_key = anon_key

    def _headers(self, access_token: Optional[str] = None) -> Dict[str, str]:
        h = {"apikey": self.anon_key, "content-type": "application/json"}
        h["authorization"] = f"Bearer {access_token or self.anon_key}"
        return h

    async def _call(self, kind: str, method: str, path: str, *,
                    json: Optional[dict] = None,
                    params: Optional[dict] = None,
                    access_token: Optional[str] = None) -> Dict[str, Any]:
        async with timeit(f"supabase.{kind}"):
            resp = await self.http.request(
                method, f"{self.base}{path}",
                json=json, params=params,
                headers=self._headers(access_token),
            )
        if resp.status_code >= 400:
            msg = _error_message(resp)
            logger.info("supabase %s failed (%d): %s", kind, resp.status_code, msg)
            if resp.status_code in (401, 403):
                status = 401
            elif resp.status_code < 500:
                status = 400
            else:
                status = 502
            raise AuthError(msg, http_status=status)
        if not resp.content:
            return {}
        return resp.json()

    async def sign_up(self, email: str, password: str,
                      full_name: str) -> Dict[str, Any]:
        """
        Returns {"user": AuthUser, "session": AuthSession | None}. The
        session is None when the project requires e-mail confirmation.
        """
        body = await self._call("sign_up", "POST", "/signup", json={
            "email": email,
            "password": password,
            "data": {"full_name": full_name},
        })
        if "access_token" in body:
            session = _to_session(body)
            return {"user": session["user"], "session": session}
        raw_user = body.get("user") or body
        return {"user": _to_user(raw_user), "session": None}

    async def sign_in(self, email: str, password: str) -> AuthSession:
        body = await self._call(
            "sign_in", "POST", "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
        )
        return _to_session(body)

    async def refresh_session(self, refresh_token: str) -> AuthSession:
        body = await self._call(
            "refresh", "POST", "/token",
            params={"grant_type": "refresh_token"},
            json={"refresh_token": refresh_token},
        )
        return _to_session(body)

    async def exchange_code(self, auth_code: str,
                            code_verifier: str) -> AuthSession:
        body = await self._call(
            "exchange_code", "POST", "/token",
            params={"grant_type": "pkce"},
            json={"auth_code": auth_code, "code_verifier": code_verifier},
        )
        return _to_session(body)

    async def sign_out(self, access_token: str) -> None:
        await self._call("sign_out", "POST", "/logout",
                         access_token=access_token)

    async def get_user(self, access_token: str) -> AuthUser:
        body = await self._call("get_user", "GET", "/user",
                                access_token=access_token)
        return _to_user(body)

    async def update_password(self, access_token: str,
                              new_password: str) -> AuthUser:
        body = await self._call("update_user", "PUT", "/user",
                                json={"password": new_password},
                                access_token=access_token)
        return _to_user(body)

    def oauth_url(self, provider: str, redirect_to: str,
                  code_challenge: str) -> str:
        query = urlencode({
            "provider": provider,
            "redirect_to": redirect_to,
            "code_challenge": code_challenge,
            "code_challenge_method": "s256",
        })
        return f"{self.base}/authorize?{query}"
