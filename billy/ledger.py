"""
Debt ledger engine.

Pure functions over ``SharedExpense`` records: nothing here talks to the
store. ``billy.debts`` loads a scope's records and feeds them in.

Debts are derived, never stored. For every unpaid share of every expense the
participant owes the payer that share; opposite directions between the same
two people are netted into one ``Debt``.
"""
from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from billy.money import ZERO, sum_money, to_money

KIND_OUTCOME = "outcome"
KIND_BILL = "bill"
KIND_ADJUSTMENT = "adjustment"


@dataclass(frozen=True)
class Debt:
    """``debtor`` owes ``creditor`` ``amount`` (always > 0)."""
    debtor: str
    creditor: str
    amount: Decimal


@dataclass
class SharedExpense:
    id: str
    scope_id: str
    amount: Decimal
    paid_by: str
    participants: List[str]
    to_pay: List[Decimal]
    has_paid: List[bool] = field(default_factory=list)
    created_at: Optional[datetime] = None
    description: str = ""
    kind: str = KIND_OUTCOME
    ref: str = ""  # id of the row holding has_paid (shared outcome / adjustment)

    @property
    def tracks_payment(self) -> bool:
        # Temporal bills have no paid/unpaid state.
        return self.kind != KIND_BILL

    def share_of(self, participant: str) -> Decimal:
        try:
            return self.to_pay[self.participants.index(participant)]
        except ValueError:
            return ZERO

    def validate(self, check_total: bool = True) -> None:
        n = len(self.participants)
        if len(self.to_pay) != n or (self.tracks_payment and len(self.has_paid) != n):
            raise ValueError(f"Expense {self.id}: participants, to_pay and has_paid differ in length")
        if len(set(self.participants)) != n:
            raise ValueError(f"Expense {self.id}: duplicate participant")
        if check_total and sum_money(self.to_pay) != to_money(self.amount):
            raise ValueError(f"Expense {self.id}: shares sum to {sum_money(self.to_pay)}, amount is {self.amount}")


def accumulate_pairs(expenses: Iterable[SharedExpense]) -> "OrderedDict[Tuple[str, str], Decimal]":
    """Sum outstanding shares per ordered (debtor, creditor) pair."""
    pairs: "OrderedDict[Tuple[str, str], Decimal]" = OrderedDict()
    for e in expenses:
        paid_flags = e.has_paid if e.tracks_payment else [False] * len(e.participants)
        for p, share, paid in zip(e.participants, e.to_pay, paid_flags):
            if p == e.paid_by or paid:
                continue
            share = to_money(share)
            if share <= 0:
                continue
            key = (p, e.paid_by)
            pairs[key] = pairs.get(key, ZERO) + share
    return pairs


def net_pairs(pairs: Dict[Tuple[str, str], Decimal]) -> List[Debt]:
    """Collapse opposite directions into a single positive debt per pair of people."""
    out: List[Debt] = []
    seen = set()
    for (debtor, creditor) in pairs:
        key = frozenset((debtor, creditor))
        if key in seen:
            continue
        seen.add(key)

        forward = pairs.get((debtor, creditor), ZERO)
        backward = pairs.get((creditor, debtor), ZERO)
        net = forward - backward
        if net > 0:
            out.append(Debt(debtor, creditor, net))
        elif net < 0:
            out.append(Debt(creditor, debtor, -net))
    return out


def compute_debts(expenses: Iterable[SharedExpense]) -> List[Debt]:
    return net_pairs(accumulate_pairs(expenses))


def net_balances(debts: Iterable[Debt]) -> Dict[str, Decimal]:
    """Positive -> should receive; negative -> should pay."""
    bal: Dict[str, Decimal] = {}
    for d in debts:
        bal[d.creditor] = bal.get(d.creditor, ZERO) + d.amount
        bal[d.debtor] = bal.get(d.debtor, ZERO) - d.amount
    return bal


def simplify_debts(debts: Iterable[Debt]) -> List[Debt]:
    """
    Replace a web of pairwise debts with an equivalent settlement set.

    Greedy matching on net balances: debtors pay creditors, both sides taken
    in name order so the result is deterministic. Every person keeps the
    same net balance and at most (people - 1) debts remain.
    """
    creditors = []
    debtors = []
    for name, v in net_balances(debts).items():
        if v > 0:
            creditors.append([name, v])
        elif v < 0:
            debtors.append([name, -v])

    creditors.sort(key=lambda x: x[0])
    debtors.sort(key=lambda x: x[0])

    out: List[Debt] = []
    i = j = 0
    while i < len(debtors) and j < len(creditors):
        d_name, d_amt = debtors[i]
        c_name, c_amt = creditors[j]

        x = min(d_amt, c_amt)
        out.append(Debt(d_name, c_name, x))

        d_amt -= x
        c_amt -= x

        if d_amt <= 0:
            i += 1
        else:
            debtors[i][1] = d_amt

        if c_amt <= 0:
            j += 1
        else:
            creditors[j][1] = c_amt

    return out


def debts_to_mapping(debts: Iterable[Debt]) -> Dict[str, Dict[str, Decimal]]:
    out: Dict[str, Dict[str, Decimal]] = {}
    for d in debts:
        out.setdefault(d.debtor, {})[d.creditor] = d.amount
    return out


def debts_to_user(debts: Iterable[Debt], user: str) -> List[Debt]:
    return [d for d in debts if d.creditor == user]


def debts_from_user(debts: Iterable[Debt], user: str) -> List[Debt]:
    return [d for d in debts if d.debtor == user]


def in_range(ts: Optional[datetime], start, end) -> bool:
    if ts is None:
        return False
    for bound, is_start in ((start, True), (end, False)):
        if bound is None:
            continue
        if isinstance(bound, datetime):
            b = bound if bound.tzinfo is not None else bound.replace(tzinfo=timezone.utc)
            ok = ts >= b if is_start else ts <= b
        else:
            day = ts.date()
            ok = day >= bound if is_start else day <= bound
        if not ok:
            return False
    return True


def totals_to_pay(
    expenses: Iterable[SharedExpense],
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Dict[str, Decimal]:
    """
    Every participant's share of the expenses created in [start, end]
    (inclusive), paid or not. Adjustments are settlements, not spending.
    """
    totals: Dict[str, Decimal] = {}
    for e in expenses:
        if e.kind == KIND_ADJUSTMENT or not in_range(e.created_at, start, end):
            continue
        for p, share in zip(e.participants, e.to_pay):
            totals[p] = totals.get(p, ZERO) + to_money(share)
    return totals
