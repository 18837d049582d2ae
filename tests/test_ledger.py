import random

import pytest

from errors import ConcurrentModification, InsufficientFunds, InvalidAmount, NotFound
from ledger import PointsLedger
from schemas import MAX_POINTS


@pytest.fixture
def employee(add_tenant, add_employee):
    return add_employee(add_tenant(), points=100)


def test_debit_and_credit(ledger, employee):
    assert ledger.debit(employee, 30) == 70
    assert ledger.credit(employee, 5) == 75
    assert ledger.balance(employee) == 75


def test_debit_whole_balance(ledger, employee):
    assert ledger.debit(employee, 100) == 0


def test_insufficient_funds_leaves_balance(ledger, employee):
    with pytest.raises(InsufficientFunds) as exc:
        ledger.debit(employee, 101)
    assert exc.value.balance == 100
    assert ledger.balance(employee) == 100


@pytest.mark.parametrize("amount", [0, -5, 2.5, True, "10"])
def test_rejects_bad_amounts(ledger, employee, amount):
    with pytest.raises(InvalidAmount):
        ledger.debit(employee, amount)
    with pytest.raises(InvalidAmount):
        ledger.credit(employee, amount)
    assert ledger.balance(employee) == 100


def test_unknown_employee(ledger):
    with pytest.raises(NotFound):
        ledger.debit("5f0000000000000000000000", 10)
    with pytest.raises(NotFound):
        ledger.credit("garbage", 10)


def test_concurrent_debit_cannot_double_spend(db, employee, racing):
    rival = PointsLedger(db)
    ledger = PointsLedger(db)
    # the rival debit lands between this ledger's read and its write
    ledger.employees = racing(db["employee"], lambda: rival.debit(employee, 80))

    with pytest.raises(InsufficientFunds):
        ledger.debit(employee, 80)
    assert PointsLedger(db).balance(employee) == 20


def test_lost_race_is_retried(db, employee, racing):
    ledger = PointsLedger(db)
    ledger.employees = racing(db["employee"], lambda: PointsLedger(db).credit(employee, 10))
    assert ledger.debit(employee, 50) == 60


def test_gives_up_after_bounded_retries(db, employee, racing):
    ledger = PointsLedger(db, max_retries=3)
    ledger.employees = racing(db["employee"], lambda: PointsLedger(db).credit(employee, 1), times=10)
    with pytest.raises(ConcurrentModification):
        ledger.debit(employee, 10)
    # only the rival's credits applied
    assert PointsLedger(db).balance(employee) == 103


def test_balance_never_negative(ledger, employee):
    rng = random.Random(7)
    expected = 100
    for _ in range(200):
        amount = rng.randint(1, 60)
        if rng.random() < 0.6:
            try:
                ledger.debit(employee, amount)
                expected -= amount
            except InsufficientFunds:
                assert amount > expected
        else:
            ledger.credit(employee, amount)
            expected += amount
        assert ledger.balance(employee) == expected >= 0


def test_credit_is_capped(db, add_tenant, add_employee):
    employee = add_employee(add_tenant(), points=MAX_POINTS - 10)
    ledger = PointsLedger(db)
    assert ledger.credit(employee, 10) == MAX_POINTS
    with pytest.raises(InvalidAmount):
        ledger.credit(employee, 1)
    assert ledger.balance(employee) == MAX_POINTS


def test_refund_ignores_the_cap(db, add_tenant, add_employee, ledger):
    employee = add_employee(add_tenant(), points=MAX_POINTS)
    ledger.refund(employee, 30)
    assert ledger.balance(employee) == MAX_POINTS + 30


def test_refund_unknown_employee(ledger):
    with pytest.raises(NotFound):
        ledger.refund("5f0000000000000000000000", 10)
