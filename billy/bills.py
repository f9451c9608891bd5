"""
Temporal bills: ad-hoc split sessions that are not tied to a profile.

A bill lives in three tables (Bills, BillParticipants, BillTransactions) and
is meant to be thrown away when the app goes to the background or the user
finishes it. ``BillSession`` owns the current bill id for one app session.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from billy import db
from billy.debts import calculate_debts
from billy.locks import forget_scope, scope_lock
from billy.money import parse_amount, to_money
from billy.scopes import bill_exists, bill_participant_names

logger = logging.getLogger(__name__)

BACKGROUND_STATES = ("background", "inactive")


def _norm_name(name) -> str:
    return (name or "").strip()


# ------------------------
# Bill ops
# ------------------------
def create_bill(initial_amount, initial_participants: Sequence[str] = ()) -> Optional[str]:
    """Always creates a new bill. Returns its id, or None if it could not be created."""
    try:
        row = db.insert_row(db.BILLS_TABLE, {"total": float(to_money(initial_amount))})
    except Exception as e:
        logger.error("Error creating bill: %s", e)
        return None

    bill_id = str(row["id"])
    for participant in initial_participants or []:
        if not add_participant_to_bill(bill_id, participant):
            logger.error("Error adding participant %r to new bill %s", participant, bill_id)
            delete_bill(bill_id)
            return None

    return bill_id


def delete_bill(bill_id) -> bool:
    """Remove a bill with its transactions and participants."""
    bill_id = db.norm_id(bill_id)
    if not bill_id:
        return False

    try:
        with scope_lock(bill_id):
            if not bill_exists(bill_id):
                logger.warning("delete_bill: bill %r not found", bill_id)
                return False
            db.delete_rows(db.BILL_TRANSACTIONS_TABLE, eq={"bill_id": bill_id})
            db.delete_rows(db.BILL_PARTICIPANTS_TABLE, eq={"bill": bill_id})
            db.delete_rows(db.BILLS_TABLE, eq={"id": bill_id})
        forget_scope(bill_id)
        return True
    except Exception as e:
        logger.error("Error deleting bill %s: %s", bill_id, e)
        return False


def add_participant_to_bill(bill_id, name: str) -> bool:
    """
    Add ``name`` to the bill. Surrounding whitespace is trimmed before the
    case-sensitive duplicate check, so "Ana " is the same participant as
    "Ana" but "ana" is not.
    """
    bill_id = db.norm_id(bill_id)
    name = _norm_name(name)
    if not bill_id or not name:
        logger.warning("add_participant_to_bill: empty bill id or name")
        return False

    try:
        with scope_lock(bill_id):
            if not bill_exists(bill_id):
                logger.warning("add_participant_to_bill: bill %r not found", bill_id)
                return False

            existing = db.select_rows(db.BILL_PARTICIPANTS_TABLE, "name", eq={"bill": bill_id, "name": name})
            if existing:
                logger.warning("Participant %r already exists in bill %s", name, bill_id)
                return False

            db.insert_row(db.BILL_PARTICIPANTS_TABLE, {"bill": bill_id, "name": name, "created_at": db.now_iso()})
            return True
    except Exception as e:
        logger.error("Error adding participant to bill %s: %s", bill_id, e)
        return False


def get_bill_participants(bill_id) -> List[str]:
    bill_id = db.norm_id(bill_id)
    if not bill_id:
        return []
    try:
        with scope_lock(bill_id):
            return bill_participant_names(bill_id)
    except Exception as e:
        logger.error("Error fetching participants of bill %s: %s", bill_id, e)
        return []


def add_outcome_to_bill(bill_id, who_paid: str, amount, description: str, participants: Sequence[str]) -> bool:
    """
    Record that ``who_paid`` paid ``amount`` for ``participants``.

    The payer does not have to be one of the participants, but both must
    already be part of the bill. Shares are split evenly when debts are
    computed.
    """
    bill_id = db.norm_id(bill_id)
    who_paid = _norm_name(who_paid)
    description = (description or "").strip()
    names = [_norm_name(p) for p in (participants or [])]

    amount_d = parse_amount(amount)

    if not bill_id or not who_paid:
        logger.warning("add_outcome_to_bill: empty bill id or payer")
        return False
    if amount_d is None or amount_d <= 0:
        logger.warning("add_outcome_to_bill: amount must be positive (%s)", amount_d)
        return False
    if not names or any(not n for n in names) or len(set(names)) != len(names):
        logger.warning("add_outcome_to_bill: participants must be non-empty and unique")
        return False

    try:
        with scope_lock(bill_id):
            if not bill_exists(bill_id):
                logger.warning("add_outcome_to_bill: bill %r not found", bill_id)
                return False

            members = set(bill_participant_names(bill_id))
            unknown = [n for n in [who_paid] + names if n not in members]
            if unknown:
                logger.warning("add_outcome_to_bill: not in bill %s: %s", bill_id, ", ".join(unknown))
                return False

            db.insert_row(
                db.BILL_TRANSACTIONS_TABLE,
                {
                    "bill_id": bill_id,
                    "description": description,
                    "paid_by": who_paid,
                    "amount": float(amount_d),
                    "participants": names,
                    "created_at": db.now_iso(),
                },
            )
            return True
    except Exception as e:
        logger.error("Error adding outcome to bill %s: %s", bill_id, e)
        return False


def delete_outcome_in_bill(bill_id, transaction_id) -> bool:
    bill_id = db.norm_id(bill_id)
    transaction_id = db.norm_id(transaction_id)
    if not bill_id or not transaction_id:
        return False

    try:
        with scope_lock(bill_id):
            deleted = db.delete_rows(db.BILL_TRANSACTIONS_TABLE, eq={"bill_id": bill_id, "id": transaction_id})
        if not deleted:
            logger.warning("Transaction %s not found in bill %s", transaction_id, bill_id)
            return False
        return True
    except Exception as e:
        logger.error("Error deleting transaction %s in bill %s: %s", transaction_id, bill_id, e)
        return False


def get_bill_transactions(bill_id) -> List[Dict[str, Any]]:
    """Transactions in insertion order (callers reverse them for display)."""
    bill_id = db.norm_id(bill_id)
    if not bill_id:
        return []
    try:
        with scope_lock(bill_id):
            rows = db.select_rows(db.BILL_TRANSACTIONS_TABLE, eq={"bill_id": bill_id}, order=["created_at", "id"])
    except Exception as e:
        logger.error("Error fetching transactions of bill %s: %s", bill_id, e)
        return []

    return [
        {
            "id": str(r["id"]),
            "description": r.get("description") or "",
            "paidBy": r.get("paid_by"),
            "amount": to_money(r.get("amount")),
            "date": db.parse_ts(r.get("created_at")),
        }
        for r in rows
    ]


# ------------------------
# Session
# ------------------------
class BillSession:
    """The temporal bill of one app session."""

    def __init__(self):
        self.bill_id: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.bill_id is not None

    def start(self, initial_amount=0, participants: Sequence[str] = ()) -> Optional[str]:
        self.bill_id = create_bill(initial_amount, participants)
        return self.bill_id

    def finish(self) -> bool:
        if self.bill_id is None:
            return True
        bill_id, self.bill_id = self.bill_id, None
        return delete_bill(bill_id)

    def reset(self, initial_amount=0, participants: Sequence[str] = ()) -> Optional[str]:
        self.finish()
        return self.start(initial_amount, participants)

    def handle_app_state(self, state: str) -> bool:
        """Tear the bill down when the app leaves the foreground."""
        if (state or "").strip().lower() in BACKGROUND_STATES:
            return self.finish()
        return True

    def add_participant(self, name: str) -> bool:
        return self.active and add_participant_to_bill(self.bill_id, name)

    def participants(self) -> List[str]:
        return get_bill_participants(self.bill_id) if self.active else []

    def add_outcome(self, who_paid: str, amount, description: str, participants: Sequence[str]) -> bool:
        return self.active and add_outcome_to_bill(self.bill_id, who_paid, amount, description, participants)

    def transactions(self) -> List[Dict[str, Any]]:
        return get_bill_transactions(self.bill_id) if self.active else []

    def debts(self) -> Dict[str, Dict[str, Decimal]]:
        if not self.active:
            return {}
        return calculate_debts(self.bill_id) or {}
