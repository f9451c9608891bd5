from datetime import date, datetime, timezone
from decimal import Decimal

from billy import db
from billy.outcomes import (
    add_category,
    add_income,
    add_outcome,
    check_category_limit,
    fetch_categories,
    fetch_incomes,
    fetch_outcomes,
    get_outcomes_from_date_range,
    remove_income,
    remove_outcome,
)
from billy.profiles import (
    add_profile,
    add_shared_users,
    fetch_balance,
    fetch_profiles,
    get_shared_users,
    is_profile_shared,
    remove_shared_users,
    update_profile_name,
)

D = Decimal


def spent(sb, category):
    return [c["spent"] for c in sb.rows(db.CATEGORIES_TABLE) if str(c["id"]) == category][0]


def test_outcome_moves_balance_and_category(sb, profile, category):
    row = add_outcome(profile, category, "12.30", "super")
    assert row is not None
    assert row["shared_outcome"] is None
    assert fetch_balance(profile) == D("-12.30")
    assert spent(sb, category) == 12.3

    assert remove_outcome(profile, row["id"]) is True
    assert fetch_balance(profile) == D("0.00")
    assert spent(sb, category) == 0.0
    assert fetch_outcomes(profile) == []
    assert remove_outcome(profile, row["id"]) is False


def test_shared_outcome_row(sb, profile, category):
    row = add_outcome(profile, category, 100, "hotel", paid_by="Ana", participants=["Ana", "Bob", "Carl"])
    shared = sb.rows(db.SHARED_OUTCOMES_TABLE)[0]

    assert row["shared_outcome"] == shared["id"]
    assert shared["paid_by"] == "Ana"
    assert shared["users"] == ["Ana", "Bob", "Carl"]
    assert shared["to_pay"] == [33.34, 33.33, 33.33]
    assert shared["has_paid"] == [True, False, False]

    assert remove_outcome(profile, row["id"]) is True
    assert sb.rows(db.SHARED_OUTCOMES_TABLE) == []


def test_failed_removal_leaves_outcome_in_place(sb, profile, category):
    row = add_outcome(profile, category, 20, "cena", paid_by="Ana", participants=["Ana", "Bob"])

    sb.fail(db.SHARED_OUTCOMES_TABLE, "delete")
    assert remove_outcome(profile, row["id"]) is False
    assert [o["id"] for o in fetch_outcomes(profile)] == [row["id"]]
    assert len(sb.rows(db.SHARED_OUTCOMES_TABLE)) == 1
    assert fetch_balance(profile) == D("-20.00")
    assert spent(sb, category) == 20.0

    sb.fail(db.PROFILES_TABLE, "update")
    assert remove_outcome(profile, row["id"]) is False
    assert len(fetch_outcomes(profile)) == 1
    assert fetch_balance(profile) == D("-20.00")
    assert spent(sb, category) == 20.0

    assert remove_outcome(profile, row["id"]) is True
    assert fetch_balance(profile) == D("0.00")
    assert sb.rows(db.SHARED_OUTCOMES_TABLE) == []


def test_outcome_rejections_write_nothing(sb, profile, category):
    assert add_outcome(profile, category, 0, "x") is None
    assert add_outcome(profile, category, "doce", "x") is None
    assert add_outcome(profile, "", 10, "x") is None
    assert add_outcome(profile, category, 10, "x", paid_by="Ana", participants=["Ana", "Ana"]) is None
    assert add_outcome(
        profile, category, 10, "x", paid_by="Ana", participants=["Ana", "Bob"], shares={"Ana": 3, "Bob": 3}
    ) is None

    assert sb.rows(db.OUTCOMES_TABLE) == []
    assert sb.rows(db.SHARED_OUTCOMES_TABLE) == []
    assert fetch_balance(profile) == D("0.00")


def test_missing_category_rolls_back(sb, profile):
    assert add_outcome(profile, "999", 10, "x", paid_by="Ana", participants=["Ana", "Bob"]) is None
    assert sb.rows(db.OUTCOMES_TABLE) == []
    assert sb.rows(db.SHARED_OUTCOMES_TABLE) == []
    assert fetch_balance(profile) == D("0.00")


def test_category_limit(sb, profile):
    cat = str(add_category(profile, "Ocio", limit=50)["id"])
    assert check_category_limit(cat, 50) is True
    assert check_category_limit(cat, 50.01) is False

    # over the limit still records the outcome
    assert add_outcome(profile, cat, 60, "concierto") is not None
    assert check_category_limit(cat, 1) is False
    assert [c["name"] for c in fetch_categories(profile)] == ["Ocio"]


def test_outcomes_in_date_range(sb, profile, category):
    add_outcome(profile, category, 5, "enero", created_at=datetime(2024, 1, 31, 23, tzinfo=timezone.utc))
    add_outcome(profile, category, 5, "febrero", created_at=datetime(2024, 2, 1, tzinfo=timezone.utc))

    rows = get_outcomes_from_date_range(profile, date(2024, 1, 1), date(2024, 1, 31))
    assert [r["description"] for r in rows] == ["enero"]
    assert get_outcomes_from_date_range(profile, "2024-01-01", "2024-01-31") == []


def test_incomes(sb, profile):
    row = add_income(profile, 1500, "nomina")
    assert row is not None
    assert fetch_balance(profile) == D("1500.00")
    assert len(fetch_incomes(profile)) == 1
    assert add_income(profile, -3, "x") is None

    assert remove_income(profile, row["id"]) is True
    assert fetch_balance(profile) == D("0.00")
    assert remove_income(profile, row["id"]) is False


def test_income_for_unknown_profile_is_undone(sb):
    assert add_income("404", 10, "x") is None
    assert sb.rows(db.INCOMES_TABLE) == []


def test_shared_users(sb, profile):
    assert is_profile_shared(profile) is False
    assert add_shared_users(profile, ["bob@mail.com", " ", "bob@mail.com"]) is True
    assert get_shared_users(profile) == ["ana@mail.com", "bob@mail.com"]
    assert is_profile_shared(profile) is True
    assert [p["name"] for p in fetch_profiles("bob@mail.com")] == ["Piso"]

    assert remove_shared_users(profile, ["bob@mail.com"]) is True
    assert is_profile_shared(profile) is False
    assert fetch_profiles("bob@mail.com") == []
    assert is_profile_shared("404") is None
    assert add_shared_users("404", ["x@mail.com"]) is False


def test_profiles(sb):
    assert add_profile("", "ana@mail.com") is None
    p = add_profile("Casa", "ana@mail.com")
    assert p["users"] == ["ana@mail.com"] and p["is_shared"] is False
    assert update_profile_name(p["id"], "Casa nueva") is True
    assert [r["name"] for r in fetch_profiles("ana@mail.com")] == ["Casa nueva"]
