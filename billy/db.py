# db.py (Supabase API version using supabase-py)
#
# Notes:
# - Uses Supabase REST API (PostgREST) via supabase-py
# - Requires Streamlit secrets:
#   [supabase]
#   url = "https://<PROJECT_REF>.supabase.co"
#   service_role_key = "<SERVICE_ROLE_KEY>"
# - Optional:
#   [billy]
#   retry_tries = 4
#   retry_base_sleep = 0.35

import logging
import random
import time

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx
import streamlit as st
from supabase import create_client, Client

logger = logging.getLogger(__name__)

PROFILES_TABLE = "Profiles"
INCOMES_TABLE = "Incomes"
OUTCOMES_TABLE = "Outcomes"
SHARED_OUTCOMES_TABLE = "SharedOutcomes"
CATEGORIES_TABLE = "Categories"
ADJUSTMENTS_TABLE = "DebtAdjustments"
BILLS_TABLE = "Bills"
BILL_PARTICIPANTS_TABLE = "BillParticipants"
BILL_TRANSACTIONS_TABLE = "BillTransactions"

_RETRYABLE = (
    httpx.RemoteProtocolError,
    httpx.ReadTimeout,
    httpx.ConnectTimeout,
    httpx.WriteTimeout,
    httpx.PoolTimeout,
    httpx.ConnectError,
)


# ------------------------
# Supabase client
# ------------------------
def _supabase_url() -> str:
    try:
        return st.secrets["supabase"]["url"]
    except Exception:
        raise RuntimeError("Missing secrets: set [supabase].url in .streamlit/secrets.toml or Streamlit Cloud Secrets")


def _supabase_service_role_key() -> str:
    try:
        return st.secrets["supabase"]["service_role_key"]
    except Exception:
        raise RuntimeError(
            "Missing secrets: set [supabase].service_role_key in .streamlit/secrets.toml or Streamlit Cloud Secrets"
        )


def _billy_setting(key: str, default):
    try:
        return st.secrets["billy"][key]
    except Exception:
        return default


@st.cache_resource(show_spinner=False)
def _sb() -> Client:
    return create_client(_supabase_url(), _supabase_service_role_key())


_client_override: Optional[Any] = None


def use_client(sb: Optional[Any]) -> None:
    """Route every query through ``sb`` instead of the cached client (None restores it)."""
    global _client_override
    _client_override = sb


def client() -> Client:
    if _client_override is not None:
        return _client_override
    return _sb()


def _ok(resp) -> Tuple[bool, Optional[str]]:
    err = getattr(resp, "error", None)
    if err:
        return False, str(err)
    return True, None


def _execute_with_retry(q, tries: Optional[int] = None, base_sleep: Optional[float] = None):
    tries = int(tries if tries is not None else _billy_setting("retry_tries", 4))
    base_sleep = float(base_sleep if base_sleep is not None else _billy_setting("retry_base_sleep", 0.35))

    last_exc = None
    for i in range(tries):
        try:
            return q.execute()
        except _RETRYABLE as e:
            last_exc = e
            logger.warning("Supabase transport error (attempt %d/%d): %s", i + 1, tries, e)
            time.sleep(base_sleep * (2**i) + random.uniform(0.0, 0.2))
            if _client_override is None:
                _sb.clear()
    raise last_exc


def _checked(resp, what: str):
    ok, msg = _ok(resp)
    if not ok:
        raise RuntimeError(f"DB error ({what}): {msg}")
    return resp


# ------------------------
# ID and timestamp helpers
# ------------------------
def norm_id(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def parse_ts(value) -> Optional[datetime]:
    """Parse a timestamp column into an aware datetime (naive values are UTC)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        s = str(value).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ------------------------
# Init
# ------------------------
def init_db() -> None:
    resp = _execute_with_retry(client().table(PROFILES_TABLE).select("id").limit(1))
    ok, msg = _ok(resp)
    if not ok:
        raise RuntimeError(f"Supabase connectivity check failed: {msg}")


# ------------------------
# Row helpers
# ------------------------
def _apply_filters(q, eq: Optional[Dict[str, Any]] = None, in_: Optional[Dict[str, List[Any]]] = None):
    for col, val in (eq or {}).items():
        q = q.eq(col, val)
    for col, vals in (in_ or {}).items():
        q = q.in_(col, list(vals))
    return q


def select_rows(
    table: str,
    columns: str = "*",
    eq: Optional[Dict[str, Any]] = None,
    in_: Optional[Dict[str, List[Any]]] = None,
    order: Optional[List[str]] = None,
    limit: Optional[int] = None,
) -> List[Dict]:
    q = _apply_filters(client().table(table).select(columns), eq, in_)
    for col in order or []:
        q = q.order(col, desc=False)
    if limit is not None:
        q = q.limit(limit)
    resp = _checked(_execute_with_retry(q), f"select {table}")
    return [dict(r) for r in (resp.data or [])]


def first_row(table: str, columns: str = "*", eq: Optional[Dict[str, Any]] = None) -> Optional[Dict]:
    rows = select_rows(table, columns, eq=eq, limit=1)
    return rows[0] if rows else None


def insert_rows(table: str, rows: List[Dict[str, Any]]) -> List[Dict]:
    if not rows:
        return []
    resp = _checked(_execute_with_retry(client().table(table).insert(rows)), f"insert {table}")
    return [dict(r) for r in (resp.data or [])]


def insert_row(table: str, row: Dict[str, Any]) -> Dict:
    out = insert_rows(table, [row])
    if not out:
        raise RuntimeError(f"DB error (insert {table}): no row returned")
    return out[0]


def update_rows(
    table: str,
    values: Dict[str, Any],
    eq: Optional[Dict[str, Any]] = None,
    in_: Optional[Dict[str, List[Any]]] = None,
) -> List[Dict]:
    q = _apply_filters(client().table(table).update(values), eq, in_)
    resp = _checked(_execute_with_retry(q), f"update {table}")
    return [dict(r) for r in (resp.data or [])]


def delete_rows(
    table: str,
    eq: Optional[Dict[str, Any]] = None,
    in_: Optional[Dict[str, List[Any]]] = None,
) -> List[Dict]:
    q = _apply_filters(client().table(table).delete(), eq, in_)
    resp = _checked(_execute_with_retry(q), f"delete {table}")
    return [dict(r) for r in (resp.data or [])]
