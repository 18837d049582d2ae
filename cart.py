"""
Cart Model

Session-scoped (product, quantity) lines. Pure in-memory state with no store
access; the storefront builds one per request and the Order Service only
trusts it for product ids and quantities.
"""

from typing import Dict, List, NamedTuple

from schemas import Product


class CartLine(NamedTuple):
    product: Product
    quantity: int


class Cart:
    def __init__(self):
        self._lines: Dict[str, CartLine] = {}

    def add(self, product: Product, quantity: int = 1) -> None:
        if quantity <= 0:
            return
        line = self._lines.get(product.id)
        if line:
            quantity += line.quantity
        self._lines[product.id] = CartLine(product, quantity)

    def set_quantity(self, product_id: str, quantity: int) -> None:
        if quantity <= 0:
            self.remove(product_id)
            return
        line = self._lines.get(product_id)
        if line:
            self._lines[product_id] = CartLine(line.product, quantity)

    def remove(self, product_id: str) -> None:
        self._lines.pop(product_id, None)

    def clear(self) -> None:
        self._lines.clear()

    def total(self) -> int:
        return sum(line.quantity * line.product.point_cost for line in self._lines.values())

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def __len__(self) -> int:
        return len(self._lines)
