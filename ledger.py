"""
Points Ledger

The only writer of employee point balances. Debits are compare-and-swap
updates on the balance value read just before, retried when another writer
got there first, so two checkouts can never spend the same points. Credits
and refunds are single $inc updates and cannot lose a race.
"""

import logging
import os

from pymongo import ReturnDocument
from pymongo.database import Database

from database import now, parse_id, store_errors
from errors import ConcurrentModification, InsufficientFunds, InvalidAmount, NotFound
from schemas import MAX_POINTS

logger = logging.getLogger(__name__)

LEDGER_MAX_RETRIES = int(os.getenv("LEDGER_MAX_RETRIES", "5"))


def _check_amount(amount) -> int:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0 or amount > MAX_POINTS:
        raise InvalidAmount(f"Point amount must be an integer between 1 and {MAX_POINTS}")
    return amount


class PointsLedger:
    def __init__(self, db: Database, max_retries: int = LEDGER_MAX_RETRIES):
        self.employees = db["employee"]
        self.max_retries = max_retries

    def balance(self, employee_id: str) -> int:
        return self._read(employee_id)

    def debit(self, employee_id: str, amount: int) -> int:
        """Take amount points from the employee; returns the new balance."""
        _check_amount(amount)
        for attempt in range(self.max_retries):
            current = self._read(employee_id)
            if current < amount:
                raise InsufficientFunds(current, amount)
            if self._swap(employee_id, current, current - amount):
                logger.info("debited %s points from employee %s (balance %s)", amount, employee_id, current - amount)
                return current - amount
            logger.info("balance of employee %s changed during debit, retry %s", employee_id, attempt + 1)
        raise ConcurrentModification(f"Balance of employee {employee_id} kept changing")

    def credit(self, employee_id: str, amount: int) -> int:
        """Admin grant: add amount points, keeping the balance within MAX_POINTS. Returns the new balance."""
        _check_amount(amount)
        _id = parse_id(employee_id)
        doc = None
        if _id is not None:
            with store_errors("balance update"):
                doc = self.employees.find_one_and_update(
                    {"_id": _id, "points": {"$lte": MAX_POINTS - amount}},
                    {"$inc": {"points": amount}, "$set": {"updated_at": now()}},
                    projection={"points": 1},
                    return_document=ReturnDocument.AFTER,
                )
        if doc is None:
            # raises NotFound when the employee is gone
            self._read(employee_id)
            raise InvalidAmount(f"Balance may not exceed {MAX_POINTS} points")
        balance = int(doc["points"])
        logger.info("credited %s points to employee %s (balance %s)", amount, employee_id, balance)
        return balance

    def refund(self, employee_id: str, amount: int) -> None:
        """Give back points taken by a debit that could not be completed. Unconditional and uncapped."""
        with store_errors("balance refund"):
            res = self.employees.update_one(
                {"_id": parse_id(employee_id)},
                {"$inc": {"points": amount}, "$set": {"updated_at": now()}},
            )
        if res.matched_count != 1:
            raise NotFound("Employee not found")
        logger.info("refunded %s points to employee %s", amount, employee_id)

    def _read(self, employee_id: str) -> int:
        _id = parse_id(employee_id)
        doc = None
        if _id is not None:
            with store_errors("balance read"):
                doc = self.employees.find_one({"_id": _id}, {"points": 1})
        if not doc:
            raise NotFound("Employee not found")
        return int(doc.get("points", 0))

    def _swap(self, employee_id: str, expected: int, new: int) -> bool:
        with store_errors("balance update"):
            res = self.employees.update_one(
                {"_id": parse_id(employee_id), "points": expected},
                {"$set": {"points": new, "updated_at": now()}},
            )
        return res.modified_count == 1
