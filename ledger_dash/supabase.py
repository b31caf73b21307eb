"""Thin client for the hosted Supabase backend.

Rows, rules and users are owned by Supabase. Requests are sent with the
caller's bearer token so row-level security scopes every query to the
signed-in user. Only the PostgREST and GoTrue endpoints the app needs are
wrapped here.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional

import requests

from .config import AppConfig
from .errors import AuthenticationError, BackendError
from .models import Rule, Scope, StoredTransaction

logger = logging.getLogger(__name__)

RULE_COLUMNS = "id,pattern,category,budget_category,enabled"
LEGACY_RULE_COLUMNS = "id,pattern,category,enabled"
TRANSACTION_COLUMNS = "id,occurred_at,amount,description,counterparty,category,budget_category"


def parse_bearer_token(header: Optional[str]) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""

    if not header:
        return None
    scheme, _, token = header.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class SupabaseClient:
    """Talk to Supabase on behalf of one authenticated user."""

    def __init__(
        self,
        config: AppConfig,
        access_token: str,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config
        self._access_token = access_token
        self._session = session or requests.Session()

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    def get_user(self) -> dict[str, Any]:
        """Return the user owning the access token.

        Raises:
            AuthenticationError: when the token is missing, expired or revoked.
        """

        response = self._request("GET", f"{self._config.auth_endpoint}/user")
        if response.status_code in (401, 403):
            raise AuthenticationError()
        self._raise_for_error(response)
        user = response.json()
        if not isinstance(user, dict) or not user.get("id"):
            raise AuthenticationError()
        return user

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------
    def fetch_rules(self) -> list[Rule]:
        """Return the user's rules in creation order.

        Projects created before budget categories existed have no
        ``budget_category`` column; the request is then repeated without it and
        every rule gets ``budget_category=None``.
        """

        params = {"select": RULE_COLUMNS, "order": "created_at.asc"}
        response = self._request("GET", self._table_url("rules"), params=params)
        if response.status_code == 400 and "budget_category" in response.text:
            logger.warning("Rules table has no budget_category column, retrying without it")
            params["select"] = LEGACY_RULE_COLUMNS
            response = self._request("GET", self._table_url("rules"), params=params)
        self._raise_for_error(response)
        return [Rule.from_row({"budget_category": None, **row}) for row in response.json() or []]

    def insert_rule(
        self,
        user_id: str,
        pattern: str,
        category: Optional[str],
        budget_category: Optional[str],
        enabled: bool,
    ) -> Rule:
        payload = {
            "user_id": user_id,
            "pattern": pattern,
            "category": category,
            "budget_category": budget_category,
            "enabled": enabled,
        }
        response = self._request(
            "POST",
            self._table_url("rules"),
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        self._raise_for_error(response)
        rows = response.json() or [payload]
        return Rule.from_row(rows[0])

    def set_rule_enabled(self, rule_id: str, enabled: bool) -> None:
        response = self._request(
            "PATCH",
            self._table_url("rules"),
            params={"id": f"eq.{rule_id}"},
            json={"enabled": enabled},
        )
        self._raise_for_error(response)

    def delete_rule(self, rule_id: str) -> None:
        response = self._request("DELETE", self._table_url("rules"), params={"id": f"eq.{rule_id}"})
        self._raise_for_error(response)

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    def insert_transactions(self, rows: Iterable[Mapping[str, Any]], user_id: str) -> int:
        """Insert a batch in one request. The backend rejects it as a whole on error."""

        payload = [{**row, "user_id": user_id} for row in rows]
        if not payload:
            return 0
        response = self._request(
            "POST",
            self._table_url("transactions"),
            json=payload,
            headers={"Prefer": "return=minimal"},
        )
        self._raise_for_error(response)
        logger.info("Inserted %d transaction(s)", len(payload))
        return len(payload)

    def update_transactions(self, ids: Iterable[str], values: Mapping[str, Optional[str]]) -> int:
        """Write ``values`` on every transaction in ``ids``; return the row count."""

        id_list = list(ids)
        if not id_list:
            return 0
        quoted = ",".join(f'"{identifier}"' for identifier in id_list)
        response = self._request(
            "PATCH",
            self._table_url("transactions"),
            params={"id": f"in.({quoted})", "select": "id"},
            json=dict(values),
            headers={"Prefer": "return=representation"},
        )
        self._raise_for_error(response)
        return len(response.json() or [])

    def fetch_transactions(self, scope: Scope) -> list[StoredTransaction]:
        """Return stored transactions of ``scope``, newest first."""

        params: list[tuple[str, str]] = [
            ("select", TRANSACTION_COLUMNS),
            ("order", "occurred_at.desc"),
        ]
        if scope.all:
            params.append(("limit", str(self._config.all_limit)))
        else:
            start, end = scope.bounds()
            params.extend(
                [
                    ("occurred_at", f"gte.{start}"),
                    ("occurred_at", f"lte.{end}"),
                    ("limit", str(self._config.month_limit)),
                ]
            )
        response = self._request("GET", self._table_url("transactions"), params=params)
        self._raise_for_error(response)
        return [StoredTransaction.from_row(row) for row in response.json() or []]

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------
    def _table_url(self, table: str) -> str:
        return f"{self._config.rest_endpoint}/{table}"

    def _request(self, method: str, url: str, headers: Optional[dict[str, str]] = None, **kwargs: Any) -> requests.Response:
        merged = {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }
        if self._config.supabase_anon_key:
            merged["apikey"] = self._config.supabase_anon_key
        merged.update(headers or {})
        try:
            return self._session.request(
                method,
                url,
                headers=merged,
                timeout=self._config.request_timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            logger.error("Supabase request %s %s failed: %s", method, url, exc)
            raise BackendError(f"Backend unavailable: {exc}", status_code=503) from exc

    @staticmethod
    def _raise_for_error(response: requests.Response) -> None:
        if response.ok:
            return
        message = response.text or f"HTTP {response.status_code}"
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("msg") or body.get("error_description") or message
        logger.warning("Supabase returned %s: %s", response.status_code, message)
        raise BackendError(message, status_code=response.status_code)


__all__ = ["SupabaseClient", "parse_bearer_token"]
