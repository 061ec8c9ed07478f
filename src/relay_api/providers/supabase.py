"""
Supabase REST client.

The relay talks to Supabase for five things:
    - identity verification of bearer tokens (GoTrue ``/auth/v1/user``)
    - the profile store (admin role lookups)
    - the log sink (``unified_logs`` rows)
    - the activity store (``user_action_logs`` rows)
    - the prompt store (``analysis_prompts`` templates)

Only the PostgREST subset those need is implemented: equality filters,
ordering, limit/offset, exact counts and single-row inserts.

Transport failures and non-2xx answers become
``RelayError(EXTERNAL_PROVIDER, provider="supabase")``; the raw body is kept
on ``cause`` for the process log.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional

import httpx

from relay_api.core.errors import RelayError
from relay_api.core.logging import debug, get_logger

_LOG = get_logger("relay.providers.supabase")

PROVIDER = "supabase"


class SupabaseClient:
    """
    Thin synchronous client over Supabase's REST endpoints.

    Args:
        url: Project URL (``https://<ref>.supabase.co``).
        service_key: Service-role key, sent as both ``apikey`` and bearer.
        timeout_s: Per-request timeout.
        transport: Optional httpx transport (tests pass MockTransport).
    """

    def __init__(
        self,
        url: str,
        service_key: str,
        timeout_s: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = url.rstrip("/")
        self._service_key = service_key
        self._http = httpx.Client(
            base_url=self.url,
            timeout=timeout_s,
            transport=transport,
            headers={
                "apikey": service_key,
                "Authorization": f"Bearer {service_key}",
            },
        )

    def close(self) -> None:
        self._http.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Identity
    # ─────────────────────────────────────────────────────────────────────────

    def get_user(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Resolve a user access token.

        Returns:
            The user object (with at least ``id``) or None when the token is
            rejected (401/403/404).

        Raises:
            RelayError: EXTERNAL_PROVIDER when the identity service cannot
                be reached or answers with any other error.
        """
        try:
            resp = self._http.get(
                "/auth/v1/user",
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as e:
            raise RelayError.provider_failure(PROVIDER, "Identity service unavailable", cause=str(e)) from e

        if resp.status_code in (401, 403, 404):
            return None
        user = self._json(resp, "Identity service error")
        if not isinstance(user, dict) or not user.get("id"):
            return None
        return user

    # ─────────────────────────────────────────────────────────────────────────
    # PostgREST
    # ─────────────────────────────────────────────────────────────────────────

    def select(
        self,
        table: str,
        filters: Optional[Mapping[str, Any]] = None,
        columns: str = "*",
        order: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        SELECT rows with equality filters.

        Example:
            client.select("profiles", {"user_id": uid}, columns="user_role", limit=1)
        """
        params = self._params(filters)
        params["select"] = columns
        if order:
            params["order"] = f"{order}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = str(limit)
        if offset is not None:
            params["offset"] = str(offset)

        resp = self._request("GET", f"/rest/v1/{table}", params=params)
        rows = self._json(resp, f"Query on {table} failed")
        debug(_LOG, "select", table=table, rows=len(rows))
        return rows

    def count(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> int:
        """Exact row count via the Content-Range header."""
        params = self._params(filters)
        params["select"] = "*"
        resp = self._request("HEAD", f"/rest/v1/{table}", params=params, headers={"Prefer": "count=exact"})
        self._check(resp, f"Count on {table} failed")
        content_range = resp.headers.get("content-range", "")
        total = content_range.rsplit("/", 1)[-1]
        return int(total) if total.isdigit() else 0

    def insert(self, table: str, row: Mapping[str, Any], returning: bool = True) -> Optional[Dict[str, Any]]:
        """
        INSERT a single row.

        Returns:
            The stored row when ``returning`` is set, else None.
        """
        prefer = "return=representation" if returning else "return=minimal"
        resp = self._request("POST", f"/rest/v1/{table}", json=dict(row), headers={"Prefer": prefer})
        if not returning:
            self._check(resp, f"Insert into {table} failed")
            return None
        rows = self._json(resp, f"Insert into {table} failed")
        return rows[0] if rows else None

    # ─────────────────────────────────────────────────────────────────────────
    # Domain lookups
    # ─────────────────────────────────────────────────────────────────────────

    def get_user_role(self, user_id: str) -> Optional[str]:
        rows = self.select("profiles", {"user_id": user_id}, columns="user_role", limit=1)
        return rows[0].get("user_role") if rows else None

    def get_analysis_prompt(self, conversation_type: str, language_code: str) -> Optional[Dict[str, Any]]:
        """Active prompt template for a conversation type and interface language."""
        rows = self.select(
            "analysis_prompts",
            {"conversation_type": conversation_type, "language_code": language_code, "is_active": True},
            limit=1,
        )
        return rows[0] if rows else None

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    @staticmethod
    def _params(filters: Optional[Mapping[str, Any]]) -> Dict[str, str]:
        params: Dict[str, str] = {}
        for column, value in (filters or {}).items():
            if isinstance(value, bool):
                value = "true" if value else "false"
            params[column] = f"eq.{value}"
        return params

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._http.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise RelayError.provider_failure(PROVIDER, "Datastore unavailable", cause=str(e)) from e

    @staticmethod
    def _check(resp: httpx.Response, message: str) -> None:
        if resp.is_success:
            return
        raise RelayError.provider_failure(
            PROVIDER, message, cause=f"HTTP {resp.status_code}: {resp.text[:500]}"
        )

    def _json(self, resp: httpx.Response, message: str) -> Any:
        self._check(resp, message)
        try:
            return resp.json()
        except ValueError as e:
            raise RelayError.provider_failure(PROVIDER, message, cause=f"invalid JSON: {e}") from e
