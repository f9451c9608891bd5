"""Profiles: personal or shared budgeting contexts that own outcomes and a balance."""
import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from billy import db
from billy.locks import scope_lock
from billy.money import ZERO, to_money

logger = logging.getLogger(__name__)


def add_profile(name: str, owner: str) -> Optional[Dict]:
    name = (name or "").strip()
    owner = (owner or "").strip()
    if not name or not owner:
        logger.warning("add_profile: name and owner are required")
        return None
    try:
        return db.insert_row(
            db.PROFILES_TABLE,
            {"name": name, "owner": owner, "users": [owner], "balance": 0.0, "is_shared": False},
        )
    except Exception as e:
        logger.error("Error adding profile %r: %s", name, e)
        return None


def get_profile(profile_id) -> Optional[Dict]:
    profile_id = db.norm_id(profile_id)
    if not profile_id:
        return None
    try:
        return db.first_row(db.PROFILES_TABLE, eq={"id": profile_id})
    except Exception as e:
        logger.error("Error getting profile %s: %s", profile_id, e)
        return None


def fetch_profiles(user: str) -> List[Dict]:
    """Profiles the user owns or shares."""
    user = (user or "").strip()
    try:
        rows = db.select_rows(db.PROFILES_TABLE, order=["name"])
    except Exception as e:
        logger.error("Error fetching profiles for %s: %s", user, e)
        return []
    return [r for r in rows if r.get("owner") == user or user in (r.get("users") or [])]


def update_profile_name(profile_id, new_name: str) -> bool:
    profile_id = db.norm_id(profile_id)
    new_name = (new_name or "").strip()
    if not profile_id or not new_name:
        return False
    try:
        return bool(db.update_rows(db.PROFILES_TABLE, {"name": new_name}, eq={"id": profile_id}))
    except Exception as e:
        logger.error("Error renaming profile %s: %s", profile_id, e)
        return False


# ------------------------
# Shared users
# ------------------------
def add_shared_users(profile_id, emails: Iterable[str]) -> bool:
    profile_id = db.norm_id(profile_id)
    emails = [(e or "").strip() for e in emails or []]
    emails = [e for e in emails if e]
    try:
        with scope_lock(profile_id):
            profile = db.first_row(db.PROFILES_TABLE, eq={"id": profile_id})
            if profile is None:
                logger.warning("add_shared_users: profile %r not found", profile_id)
                return False
            users = list(profile.get("users") or [])
            for e in emails:
                if e not in users:
                    users.append(e)
            db.update_rows(
                db.PROFILES_TABLE, {"users": users, "is_shared": len(users) > 1}, eq={"id": profile_id}
            )
            return True
    except Exception as e:
        logger.error("Error adding shared users to %s: %s", profile_id, e)
        return False


def remove_shared_users(profile_id, emails: Iterable[str]) -> bool:
    profile_id = db.norm_id(profile_id)
    drop = {(e or "").strip() for e in emails or []}
    try:
        with scope_lock(profile_id):
            profile = db.first_row(db.PROFILES_TABLE, eq={"id": profile_id})
            if profile is None:
                return False
            users = [u for u in (profile.get("users") or []) if u not in drop]
            db.update_rows(
                db.PROFILES_TABLE, {"users": users, "is_shared": len(users) > 1}, eq={"id": profile_id}
            )
            return True
    except Exception as e:
        logger.error("Error removing shared users from %s: %s", profile_id, e)
        return False


def get_shared_users(profile_id) -> List[str]:
    profile = get_profile(profile_id)
    return list(profile.get("users") or []) if profile else []


def is_profile_shared(profile_id) -> Optional[bool]:
    profile = get_profile(profile_id)
    if profile is None:
        return None
    return bool(profile.get("is_shared", False))


# ------------------------
# Balance
# ------------------------
def fetch_balance(profile_id) -> Decimal:
    profile = get_profile(profile_id)
    return to_money(profile.get("balance")) if profile else ZERO


def update_balance(profile_id, delta) -> bool:
    """Add ``delta`` (may be negative) to the profile balance."""
    profile_id = db.norm_id(profile_id)
    try:
        with scope_lock(profile_id):
            profile = db.first_row(db.PROFILES_TABLE, "id,balance", eq={"id": profile_id})
            if profile is None:
                logger.warning("update_balance: profile %r not found", profile_id)
                return False
            new_balance = to_money(profile.get("balance")) + to_money(delta)
            db.update_rows(db.PROFILES_TABLE, {"balance": float(new_balance)}, eq={"id": profile_id})
            return True
    except Exception as e:
        logger.error("Error updating balance of %s: %s", profile_id, e)
        return False
