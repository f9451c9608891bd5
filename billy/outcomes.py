"""
Incomes, categories and outcomes of a profile.

An outcome with a payer and participants also gets a SharedOutcomes row
holding one share and one paid flag per participant; that row is what the
debt ledger reads.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Mapping, Optional, Sequence

from billy import db
from billy.ledger import in_range
from billy.locks import scope_lock
from billy.money import allocate_even, allocate_fixed, parse_amount, to_money
from billy.profiles import update_balance

logger = logging.getLogger(__name__)


def _ts(created_at: Optional[datetime]) -> str:
    return created_at.isoformat() if created_at is not None else db.now_iso()


# ------------------------
# Incomes
# ------------------------
def fetch_incomes(profile) -> List[Dict]:
    try:
        return db.select_rows(db.INCOMES_TABLE, eq={"profile": db.norm_id(profile)}, order=["created_at", "id"])
    except Exception as e:
        logger.error("Error fetching incomes of %s: %s", profile, e)
        return []


def add_income(profile, amount, description: str, created_at: Optional[datetime] = None) -> Optional[Dict]:
    profile = db.norm_id(profile)
    amount_d = parse_amount(amount)
    if amount_d is None or amount_d <= 0:
        logger.warning("add_income: amount must be positive (%s)", amount_d)
        return None
    try:
        row = db.insert_row(
            db.INCOMES_TABLE,
            {
                "profile": profile,
                "amount": float(amount_d),
                "description": (description or "").strip(),
                "created_at": _ts(created_at),
            },
        )
    except Exception as e:
        logger.error("Error adding income: %s", e)
        return None
    if not update_balance(profile, amount_d):
        db.delete_rows(db.INCOMES_TABLE, eq={"id": row["id"]})
        return None
    return row


def remove_income(profile, income_id) -> bool:
    profile = db.norm_id(profile)
    try:
        deleted = db.delete_rows(db.INCOMES_TABLE, eq={"id": db.norm_id(income_id), "profile": profile})
    except Exception as e:
        logger.error("Error removing income %s: %s", income_id, e)
        return False
    if not deleted:
        logger.warning("Income not found: %s", income_id)
        return False
    return update_balance(profile, -to_money(deleted[0].get("amount")))


# ------------------------
# Categories
# ------------------------
def fetch_categories(profile) -> List[Dict]:
    try:
        return db.select_rows(db.CATEGORIES_TABLE, eq={"profile": db.norm_id(profile)}, order=["name"])
    except Exception as e:
        logger.error("Error fetching categories of %s: %s", profile, e)
        return []


def add_category(profile, name: str, color: str = "", icon: str = "", limit=None) -> Optional[Dict]:
    name = (name or "").strip()
    if not name:
        return None
    try:
        return db.insert_row(
            db.CATEGORIES_TABLE,
            {
                "profile": db.norm_id(profile),
                "name": name,
                "color": color,
                "icon": icon,
                "spent": 0.0,
                "limit": float(to_money(limit)) if limit is not None else None,
            },
        )
    except Exception as e:
        logger.error("Error adding category %r: %s", name, e)
        return None


def _update_category_spent(category_id: str, delta: Decimal) -> None:
    cat = db.first_row(db.CATEGORIES_TABLE, "id,spent", eq={"id": category_id})
    if cat is None:
        raise RuntimeError(f"Category not found: {category_id}")
    spent = to_money(cat.get("spent")) + delta
    db.update_rows(db.CATEGORIES_TABLE, {"spent": float(spent)}, eq={"id": category_id})


def check_category_limit(category_id, amount) -> bool:
    """True while spent + amount stays within the category limit (or there is none)."""
    try:
        cat = db.first_row(db.CATEGORIES_TABLE, "id,spent,limit", eq={"id": db.norm_id(category_id)})
    except Exception as e:
        logger.error("Error checking limit of category %s: %s", category_id, e)
        return True
    if cat is None or cat.get("limit") is None:
        return True
    return to_money(cat.get("spent")) + to_money(amount) <= to_money(cat["limit"])


# ------------------------
# Outcomes
# ------------------------
def fetch_outcomes(profile) -> List[Dict]:
    try:
        return db.select_rows(db.OUTCOMES_TABLE, eq={"profile": db.norm_id(profile)}, order=["created_at", "id"])
    except Exception as e:
        logger.error("Error fetching outcomes of %s: %s", profile, e)
        return []


def get_outcomes_from_date_range(profile, start, end) -> List[Dict]:
    try:
        return [o for o in fetch_outcomes(profile) if in_range(db.parse_ts(o.get("created_at")), start, end)]
    except (TypeError, ValueError) as e:
        logger.error("Error filtering outcomes of %s by date: %s", profile, e)
        return []


def _build_shares(
    amount: Decimal,
    paid_by: str,
    participants: Sequence[str],
    shares: Optional[Mapping[str, object]],
) -> Dict[str, object]:
    users = [(p or "").strip() for p in participants]
    if any(not u for u in users) or len(set(users)) != len(users):
        raise ValueError("Participants must be non-empty and unique")
    alloc = allocate_fixed(amount, users, shares) if shares else allocate_even(amount, users)
    return {
        "paid_by": paid_by,
        "users": users,
        "to_pay": [float(alloc[u]) for u in users],
        "has_paid": [u == paid_by for u in users],
    }


def add_outcome(
    profile,
    category,
    amount,
    description: str,
    created_at: Optional[datetime] = None,
    paid_by: Optional[str] = None,
    participants: Optional[Sequence[str]] = None,
    shares: Optional[Mapping[str, object]] = None,
) -> Optional[Dict]:
    """
    Record an outcome. With ``paid_by`` and ``participants`` it is shared:
    ``participants`` are everyone splitting the cost (include the payer to
    give them a share), ``shares`` optionally fixes each participant's part.
    """
    profile = db.norm_id(profile)
    category = db.norm_id(category)
    paid_by = (paid_by or "").strip()
    if not category:
        logger.warning("add_outcome: missing category")
        return None

    amount_d = parse_amount(amount)
    if amount_d is None or amount_d <= 0:
        logger.warning("add_outcome: amount must be positive (%s)", amount_d)
        return None

    written = []  # (table, id) to undo on failure
    try:
        shared_row = None
        if paid_by and participants:
            shared_row = _build_shares(amount_d, paid_by, participants, shares)

        with scope_lock(profile):
            if not check_category_limit(category, amount_d):
                logger.warning("Category %s limit reached", category)

            outcome = {
                "profile": profile,
                "category": category,
                "amount": float(amount_d),
                "description": (description or "").strip(),
                "created_at": _ts(created_at),
                "shared_outcome": None,
            }
            if shared_row is not None:
                shared = db.insert_row(db.SHARED_OUTCOMES_TABLE, shared_row)
                written.append((db.SHARED_OUTCOMES_TABLE, shared["id"]))
                outcome["shared_outcome"] = shared["id"]

            row = db.insert_row(db.OUTCOMES_TABLE, outcome)
            written.append((db.OUTCOMES_TABLE, row["id"]))

            _update_category_spent(category, amount_d)
            if not update_balance(profile, -amount_d):
                _update_category_spent(category, -amount_d)
                raise RuntimeError(f"Balance update failed for profile {profile}")
            return row
    except Exception as e:
        logger.error("Error adding outcome: %s", e)
        for table, row_id in reversed(written):
            try:
                db.delete_rows(table, eq={"id": row_id})
            except Exception as cleanup_error:
                logger.error("Cleanup of %s %s failed: %s", table, row_id, cleanup_error)
        return None


def _undo(steps, what: str) -> None:
    for step in reversed(steps):
        try:
            step()
        except Exception as undo_error:
            logger.error("Undo after failed %s failed: %s", what, undo_error)


def remove_outcome(profile, outcome_id) -> bool:
    """
    Delete an outcome and give its amount back to the balance and the
    category. If any step fails the earlier ones are undone.
    """
    profile = db.norm_id(profile)
    outcome_id = db.norm_id(outcome_id)
    try:
        with scope_lock(profile):
            outcome = db.first_row(db.OUTCOMES_TABLE, eq={"id": outcome_id, "profile": profile})
            if outcome is None:
                logger.warning("Outcome not found: %s", outcome_id)
                return False

            amount_d = to_money(outcome.get("amount"))
            category = db.norm_id(outcome.get("category"))
            undo = []
            try:
                if category:
                    _update_category_spent(category, -amount_d)
                    undo.append(lambda: _update_category_spent(category, amount_d))
                if not update_balance(profile, amount_d):
                    raise RuntimeError(f"Balance update failed for profile {profile}")
                undo.append(lambda: update_balance(profile, -amount_d))

                # the outcome points at its shared outcome, so it goes first
                db.delete_rows(db.OUTCOMES_TABLE, eq={"id": outcome_id})
                undo.append(lambda: db.insert_row(db.OUTCOMES_TABLE, outcome))
                if outcome.get("shared_outcome"):
                    db.delete_rows(db.SHARED_OUTCOMES_TABLE, eq={"id": outcome["shared_outcome"]})
                return True
            except Exception:
                _undo(undo, f"removal of outcome {outcome_id}")
                raise
    except Exception as e:
        logger.error("Error removing outcome %s: %s", outcome_id, e)
        return False
