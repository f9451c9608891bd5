"""
Tabular views over a scope for dashboards and exports.

- build_debt_matrix: who owes whom, debtors as rows and creditors as columns
- build_share_matrix: one row per expense with every participant's share
"""
import logging
from typing import List

import pandas as pd

from billy.ledger import KIND_ADJUSTMENT, compute_debts, in_range
from billy.money import sum_money, to_money
from billy.scopes import load_scope

logger = logging.getLogger(__name__)

SHARE_META_COLS = ["Expense ID", "Date", "Title", "Amount", "Paid by"]


def _names_sorted(names) -> List[str]:
    # sort by name (case-insensitive, trimmed) to keep tables stable
    return sorted(set(names), key=lambda n: str(n).strip().lower())


def build_debt_matrix(scope_id) -> pd.DataFrame:
    try:
        scope = load_scope(scope_id)
    except Exception as e:
        logger.error("build_debt_matrix(%r) failed: %s", scope_id, e)
        return pd.DataFrame()
    if scope is None:
        return pd.DataFrame()

    debts = compute_debts(scope.expenses)
    if not debts:
        return pd.DataFrame()

    debtors = _names_sorted(d.debtor for d in debts)
    creditors = _names_sorted(d.creditor for d in debts)

    df = pd.DataFrame(0.0, index=debtors, columns=creditors)
    for d in debts:
        df.loc[d.debtor, d.creditor] = float(d.amount)
    df.index.name = "Debtor"
    return df


def build_share_matrix(scope_id, start=None, end=None) -> pd.DataFrame:
    """
    Share matrix:
    - Participant columns show each participant's share of the expense
    - Amount: total expense amount
    - Paid by: payer
    - NG: "!" if sum(participant shares) != Amount, else blank
    """
    try:
        scope = load_scope(scope_id)
        if scope is None:
            return pd.DataFrame()
        expenses = [
            e for e in scope.expenses
            if e.kind != KIND_ADJUSTMENT and ((start is None and end is None) or in_range(e.created_at, start, end))
        ]
    except Exception as e:
        logger.error("build_share_matrix(%r) failed: %s", scope_id, e)
        return pd.DataFrame()

    names = _names_sorted(p for e in expenses for p in e.participants)
    cols = SHARE_META_COLS + names + ["NG"]
    if not expenses:
        return pd.DataFrame(columns=cols)

    rows = []
    for e in expenses:
        row = {
            "Expense ID": e.id,
            "Date": e.created_at.date().isoformat() if e.created_at else "",
            "Title": e.description,
            "Amount": float(e.amount),
            "Paid by": e.paid_by,
        }
        for name in names:
            row[name] = float(e.share_of(name))
        row["NG"] = "!" if sum_money(e.to_pay) != to_money(e.amount) else ""
        rows.append(row)

    df = pd.DataFrame(rows).reindex(columns=cols)
    for name in names:
        df[name] = pd.to_numeric(df[name], errors="coerce").fillna(0)
    return df
