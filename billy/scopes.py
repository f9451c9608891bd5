"""
Loading a debt scope (shared profile or temporal bill) as ledger records.

A scope id is looked up in ``Bills`` first, then in ``Profiles``. The whole
load happens under the scope lock, so callers get a consistent snapshot and
can compute on it without holding the lock.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from billy import db
from billy.ledger import KIND_ADJUSTMENT, KIND_BILL, KIND_OUTCOME, SharedExpense
from billy.locks import scope_lock
from billy.money import allocate_even, sum_money, to_money

logger = logging.getLogger(__name__)

SCOPE_BILL = "bill"
SCOPE_PROFILE = "profile"


@dataclass
class Scope:
    id: str
    kind: str
    expenses: List[SharedExpense] = field(default_factory=list)


def bill_exists(bill_id: str) -> bool:
    return db.first_row(db.BILLS_TABLE, "id", eq={"id": bill_id}) is not None


def profile_exists(profile_id: str) -> bool:
    return db.first_row(db.PROFILES_TABLE, "id", eq={"id": profile_id}) is not None


def bill_participant_names(bill_id: str) -> List[str]:
    rows = db.select_rows(
        db.BILL_PARTICIPANTS_TABLE, "name,created_at", eq={"bill": bill_id}, order=["created_at", "id"]
    )
    return [str(r["name"]) for r in rows]


def bill_expense_from_row(row: Dict, bill_id: str, fallback_participants: List[str]) -> SharedExpense:
    participants = [str(p) for p in (row.get("participants") or [])]
    # legacy rows were split among everyone in the bill
    if not participants:
        participants = list(fallback_participants)
    amount = to_money(row.get("amount"))
    alloc = allocate_even(amount, participants)
    return SharedExpense(
        id=str(row["id"]),
        scope_id=bill_id,
        amount=amount,
        paid_by=str(row.get("paid_by") or ""),
        participants=participants,
        to_pay=[alloc[p] for p in participants],
        has_paid=[],
        created_at=db.parse_ts(row.get("created_at")),
        description=row.get("description") or "",
        kind=KIND_BILL,
    )


def shared_expense_from_rows(outcome: Dict, shared: Dict, profile_id: str) -> SharedExpense:
    users = [str(u) for u in (shared.get("users") or [])]
    to_pay = [to_money(x) for x in (shared.get("to_pay") or [])]
    has_paid = [bool(x) for x in (shared.get("has_paid") or [])]
    # rows written before paid_by existed stored the payer first
    paid_by = shared.get("paid_by") or (users[0] if users else "")
    if len(has_paid) < len(users):
        has_paid = has_paid + [False] * (len(users) - len(has_paid))
    return SharedExpense(
        id=str(outcome["id"]),
        scope_id=profile_id,
        amount=to_money(outcome.get("amount")),
        paid_by=str(paid_by),
        participants=users,
        to_pay=to_pay,
        has_paid=has_paid,
        created_at=db.parse_ts(outcome.get("created_at")),
        description=outcome.get("description") or "",
        kind=KIND_OUTCOME,
        ref=str(shared["id"]),
    )


def adjustment_from_row(row: Dict, profile_id: str) -> SharedExpense:
    amount = to_money(row.get("amount"))
    return SharedExpense(
        id=str(row["id"]),
        scope_id=profile_id,
        amount=amount,
        paid_by=str(row["creditor"]),
        participants=[str(row["debtor"])],
        to_pay=[amount],
        has_paid=[bool(row.get("has_paid", False))],
        created_at=db.parse_ts(row.get("created_at")),
        description="Redistribution",
        kind=KIND_ADJUSTMENT,
        ref=str(row["id"]),
    )


def _load_bill(bill_id: str) -> Scope:
    participants = bill_participant_names(bill_id)
    rows = db.select_rows(db.BILL_TRANSACTIONS_TABLE, eq={"bill_id": bill_id}, order=["created_at", "id"])
    expenses = [bill_expense_from_row(r, bill_id, participants) for r in rows]
    return Scope(id=bill_id, kind=SCOPE_BILL, expenses=expenses)


def _load_profile(profile_id: str, include_adjustments: bool = True) -> Scope:
    outcomes = db.select_rows(
        db.OUTCOMES_TABLE,
        "id,amount,description,created_at,shared_outcome",
        eq={"profile": profile_id},
        order=["created_at", "id"],
    )
    outcomes = [o for o in outcomes if o.get("shared_outcome")]

    shared_by_id: Dict[str, Dict] = {}
    if outcomes:
        shared_rows = db.select_rows(
            db.SHARED_OUTCOMES_TABLE, in_={"id": [o["shared_outcome"] for o in outcomes]}
        )
        shared_by_id = {str(r["id"]): r for r in shared_rows}

    expenses: List[SharedExpense] = []
    for o in outcomes:
        shared = shared_by_id.get(str(o["shared_outcome"]))
        if shared is None:
            logger.warning("Outcome %s points at missing shared outcome %s", o["id"], o["shared_outcome"])
            continue
        e = shared_expense_from_rows(o, shared, profile_id)
        try:
            e.validate(check_total=False)
        except ValueError as err:
            logger.warning("Skipping shared outcome %s: %s", e.ref, err)
            continue
        # older rows may carry unrounded shares; they still count as stored
        if sum_money(e.to_pay) != e.amount:
            logger.warning("Shared outcome %s: shares sum to %s, amount is %s", e.ref, sum_money(e.to_pay), e.amount)
        expenses.append(e)

    if include_adjustments:
        adj_rows = db.select_rows(db.ADJUSTMENTS_TABLE, eq={"profile": profile_id}, order=["created_at", "id"])
        expenses.extend(adjustment_from_row(r, profile_id) for r in adj_rows)

    return Scope(id=profile_id, kind=SCOPE_PROFILE, expenses=expenses)


def load_scope(scope_id) -> Optional[Scope]:
    """Snapshot of a bill or profile, or None when the id is unknown. Raises on store errors."""
    scope_id = db.norm_id(scope_id)
    if not scope_id:
        return None
    with scope_lock(scope_id):
        if bill_exists(scope_id):
            return _load_bill(scope_id)
        if profile_exists(scope_id):
            return _load_profile(scope_id)
    return None


def load_profile(profile_id) -> Optional[Scope]:
    profile_id = db.norm_id(profile_id)
    if not profile_id:
        return None
    with scope_lock(profile_id):
        if not profile_exists(profile_id):
            return None
        return _load_profile(profile_id)
