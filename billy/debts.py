"""
Public debt operations for shared profiles and temporal bills.

Nothing raised by the store or by validation escapes these functions: reads
return None (unknown scope) or an empty result, mutations return False, and
the reason is logged.
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from billy import db
from billy.ledger import (
    KIND_ADJUSTMENT,
    Debt,
    compute_debts,
    debts_from_user,
    debts_to_mapping,
    debts_to_user,
    simplify_debts,
    totals_to_pay,
)
from billy.locks import scope_lock
from billy.money import ZERO, sum_money
from billy.scopes import load_profile, load_scope

logger = logging.getLogger(__name__)

# Range used by the dashboard for "my total spend".
SUMMARY_START = date(2024, 1, 1)
SUMMARY_END = date(2030, 12, 31)


@dataclass
class DebtSummary:
    debts_to_user: List[Debt] = field(default_factory=list)
    debts_from_user: List[Debt] = field(default_factory=list)
    total_debts_to_user: Decimal = ZERO
    total_debts_from_user: Decimal = ZERO
    total_to_pay: Decimal = ZERO


def _scope_debts(scope_id) -> Optional[List[Debt]]:
    scope = load_scope(scope_id)
    if scope is None:
        logger.warning("Unknown debt scope: %r", scope_id)
        return None
    return compute_debts(scope.expenses)


def calculate_debts(scope_id) -> Optional[Dict[str, Dict[str, Decimal]]]:
    """{debtor: {creditor: amount}} with only positive entries; None if the scope is unknown."""
    try:
        debts = _scope_debts(scope_id)
    except Exception as e:
        logger.error("calculate_debts(%r) failed: %s", scope_id, e)
        return None
    if debts is None:
        return None
    return debts_to_mapping(debts)


def get_debts_from_profile(scope_id) -> Optional[List[Debt]]:
    try:
        return _scope_debts(scope_id)
    except Exception as e:
        logger.error("get_debts_from_profile(%r) failed: %s", scope_id, e)
        return None


def get_debts_to_user(user_key: str, scope_id) -> Optional[List[Debt]]:
    debts = get_debts_from_profile(scope_id)
    if debts is None:
        return None
    return debts_to_user(debts, user_key)


def get_debts_from_user(user_key: str, scope_id) -> Optional[List[Debt]]:
    debts = get_debts_from_profile(scope_id)
    if debts is None:
        return None
    return debts_from_user(debts, user_key)


def get_debt(scope_id, creditor: str, debtor: str) -> Optional[Debt]:
    for d in get_debts_from_profile(scope_id) or []:
        if d.creditor == creditor and d.debtor == debtor:
            return d
    return None


def get_total_to_pay_in_date_range(scope_id, start_date, end_date) -> Dict[str, Decimal]:
    try:
        scope = load_scope(scope_id)
        if scope is None:
            return {}
        return totals_to_pay(scope.expenses, start_date, end_date)
    except Exception as e:
        logger.error("get_total_to_pay_in_date_range(%r) failed: %s", scope_id, e)
        return {}


def get_total_to_pay_for_user_in_date_range(user_key: str, scope_id, start_date, end_date) -> Decimal:
    return get_total_to_pay_in_date_range(scope_id, start_date, end_date).get(user_key, ZERO)


def get_debt_summary(user_key: str, scope_id) -> Optional[DebtSummary]:
    try:
        scope = load_scope(scope_id)
        if scope is None:
            return None

        debts = compute_debts(scope.expenses)
        to_user = debts_to_user(debts, user_key)
        from_user = debts_from_user(debts, user_key)
        return DebtSummary(
            debts_to_user=to_user,
            debts_from_user=from_user,
            total_debts_to_user=sum_money(d.amount for d in to_user),
            total_debts_from_user=sum_money(d.amount for d in from_user),
            total_to_pay=totals_to_pay(scope.expenses, SUMMARY_START, SUMMARY_END).get(user_key, ZERO),
        )
    except Exception as e:
        logger.error("get_debt_summary(%r) failed: %s", scope_id, e)
        return None


# ------------------------
# Settlement status
# ------------------------
def _mark_outcome_share(profile_id: str, participant: str, outcome_id: str, paid: bool) -> Optional[bool]:
    # None -> outcome not in this profile; caller tries adjustments next
    outcome = db.first_row(
        db.OUTCOMES_TABLE, "id,profile,shared_outcome", eq={"id": outcome_id, "profile": profile_id}
    )
    if outcome is None:
        return None
    if not outcome.get("shared_outcome"):
        logger.warning("Outcome %s is not shared", outcome_id)
        return False

    shared = db.first_row(db.SHARED_OUTCOMES_TABLE, eq={"id": outcome["shared_outcome"]})
    if shared is None:
        logger.warning("Shared outcome %s not found", outcome["shared_outcome"])
        return False

    users = [str(u) for u in (shared.get("users") or [])]
    if participant not in users:
        logger.warning("User not found in shared outcome: %s", participant)
        return False

    has_paid = [bool(x) for x in (shared.get("has_paid") or [])]
    has_paid += [False] * (len(users) - len(has_paid))
    idx = users.index(participant)
    if has_paid[idx] == paid:
        return True

    has_paid[idx] = paid
    db.update_rows(db.SHARED_OUTCOMES_TABLE, {"has_paid": has_paid}, eq={"id": shared["id"]})
    return True


def _mark_adjustment(profile_id: str, participant: str, adjustment_id: str, paid: bool) -> bool:
    adj = db.first_row(db.ADJUSTMENTS_TABLE, eq={"id": adjustment_id, "profile": profile_id})
    if adj is None:
        logger.warning("Expense %s not found in profile %s", adjustment_id, profile_id)
        return False
    if str(adj.get("debtor")) != participant:
        logger.warning("User %s is not the debtor of adjustment %s", participant, adjustment_id)
        return False
    if bool(adj.get("has_paid", False)) != paid:
        db.update_rows(db.ADJUSTMENTS_TABLE, {"has_paid": paid}, eq={"id": adj["id"]})
    return True


def mark_as_paid(scope_id, participant_key: str, expense_id, paid: bool) -> bool:
    """Set one participant's paid flag on one expense. Amounts are never touched."""
    profile_id = db.norm_id(scope_id)
    expense_id = db.norm_id(expense_id)
    participant_key = (participant_key or "").strip()
    if not profile_id or not expense_id or not participant_key:
        return False

    try:
        with scope_lock(profile_id):
            res = _mark_outcome_share(profile_id, participant_key, expense_id, bool(paid))
            if res is None:
                res = _mark_adjustment(profile_id, participant_key, expense_id, bool(paid))
            return res
    except Exception as e:
        logger.error("mark_as_paid(%r, %r, %r) failed: %s", scope_id, participant_key, expense_id, e)
        return False


# ------------------------
# Redistribution
# ------------------------
def _settle_outstanding(scope) -> None:
    """
    Mark every unpaid share and adjustment of the profile as paid.

    Either all of it is marked or, when a write fails, the shares already
    marked get their previous flags back before the error is re-raised.
    """
    adjustment_ids = []
    shares = []  # (shared outcome id, has_paid before settling)
    for e in scope.expenses:
        if e.kind == KIND_ADJUSTMENT:
            if not all(e.has_paid):
                adjustment_ids.append(e.id)
            continue
        if all(paid or p == e.paid_by for p, paid in zip(e.participants, e.has_paid)):
            continue
        shares.append((e.ref, list(e.has_paid)))

    done = []
    try:
        for ref, before in shares:
            db.update_rows(db.SHARED_OUTCOMES_TABLE, {"has_paid": [True] * len(before)}, eq={"id": ref})
            done.append((ref, before))

        # single request: either every adjustment is marked or none is
        if adjustment_ids:
            db.update_rows(db.ADJUSTMENTS_TABLE, {"has_paid": True}, in_={"id": adjustment_ids})
    except Exception:
        for ref, before in reversed(done):
            try:
                db.update_rows(db.SHARED_OUTCOMES_TABLE, {"has_paid": before}, eq={"id": ref})
            except Exception as restore_error:
                logger.error("Restoring paid flags of shared outcome %s failed: %s", ref, restore_error)
        raise


def redistribute_debts(scope_id) -> bool:
    """
    Replace the profile's outstanding debts with their simplified equivalent.

    The simplified debts are written as unpaid rows in DebtAdjustments and
    every share that was outstanding is marked paid, so the expense history
    stays intact and calculate_debts returns exactly the simplified set.
    """
    profile_id = db.norm_id(scope_id)
    if not profile_id:
        return False

    inserted: List[Dict] = []
    try:
        with scope_lock(profile_id):
            scope = load_profile(profile_id)
            if scope is None:
                logger.warning("redistribute_debts: profile %r not found", scope_id)
                return False

            current = compute_debts(scope.expenses)
            if not current:
                return True
            simplified = simplify_debts(current)

            stamp = db.now_iso()
            inserted = db.insert_rows(
                db.ADJUSTMENTS_TABLE,
                [
                    {
                        "profile": profile_id,
                        "debtor": d.debtor,
                        "creditor": d.creditor,
                        "amount": float(d.amount),
                        "has_paid": False,
                        "created_at": stamp,
                    }
                    for d in simplified
                ],
            )
            try:
                _settle_outstanding(scope)
            except Exception:
                ids = [r["id"] for r in inserted if r.get("id") is not None]
                if ids:
                    db.delete_rows(db.ADJUSTMENTS_TABLE, in_={"id": ids})
                raise

            logger.info(
                "Redistributed %d debts into %d for profile %s", len(current), len(simplified), profile_id
            )
            return True
    except Exception as e:
        logger.error("redistribute_debts(%r) failed: %s", scope_id, e)
        return False
