"""
Client-side shopping cart.

The cart lives with the shopper, never on the server. Prices held here are for
display only; the API re-reads every price when the order is placed.
"""
from typing import Dict, List


class CartLine:
    def __init__(self, product_id: int, name: str, price: float, quantity: int):
        self.product_id = product_id
        self.name = name
        self.price = price
        self.quantity = quantity

    @property
    def subtotal(self) -> float:
        return round(self.price * self.quantity, 2)

    def __repr__(self):
        return f"<CartLine(product_id={self.product_id}, quantity={self.quantity})>"


class Cart:
    """
    Shopping cart keyed by product ID.

    Adding a product that is already in the cart increases its quantity.
    Setting a quantity to zero or less removes the line.
    """

    def __init__(self):
        self._lines: Dict[int, CartLine] = {}

    def __len__(self) -> int:
        return len(self._lines)

    def __contains__(self, product_id: int) -> bool:
        return product_id in self._lines

    @property
    def lines(self) -> List[CartLine]:
        return list(self._lines.values())

    @property
    def is_empty(self) -> bool:
        return not self._lines

    def add(self, product_id: int, name: str, price: float, quantity: int = 1) -> CartLine:
        """
        Put a product in the cart.

        Args:
            product_id: Catalog ID of the product
            name: Display name
            price: Display price per unit
            quantity: Units to add (must be positive)

        Returns:
            The cart line for this product

        Raises:
            ValueError: if quantity is not positive
        """
        if quantity < 1:
            raise ValueError("quantity must be at least 1")
        line = self._lines.get(product_id)
        if line is None:
            line = CartLine(product_id, name, price, quantity)
            self._lines[product_id] = line
        else:
            line.quantity += quantity
            line.price = price
        return line

    def update_quantity(self, product_id: int, quantity: int) -> None:
        if quantity <= 0:
            self.remove(product_id)
            return
        if product_id not in self._lines:
            raise KeyError(product_id)
        self._lines[product_id].quantity = quantity

    def remove(self, product_id: int) -> None:
        self._lines.pop(product_id, None)

    def clear(self) -> None:
        self._lines.clear()

    def total(self) -> float:
        return round(sum(line.subtotal for line in self._lines.values()), 2)

    def item_count(self) -> int:
        """Total units across all lines."""
        return sum(line.quantity for line in self._lines.values())

    def to_order_items(self) -> List[dict]:
        """Cart lines in the shape POST /api/orders expects."""
        return [
            {"productId": line.product_id, "quantity": line.quantity}
            for line in self._lines.values()
        ]
