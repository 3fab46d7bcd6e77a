"""
cart_pipeline.py — Versioned Cart Mutation Pipeline

This module sequences single-action updates against the commerce platform's versioned
cart aggregate and turns a cart into an order.

Contract:
    - Every mutation takes `(cart_id, expected_version, payload)` and issues exactly one
      versioned update request carrying exactly one action. Actions are never batched:
      one business operation = one round trip = one version bump.
    - `expected_version` must be the version most recently observed by the caller.
      A stale version surfaces as `ConflictError`; the caller refetches and retries.
    - The pipeline never retries on its own.

Order numbers are drawn from `secrets`, so they are neither predictable nor likely to collide.
"""

import secrets
from typing import Any, Dict, Union

import pydantic

from .clients import CommerceClient
from .errors import ValidationError
from .logging_config import get_logger
from .models import (
    AddLineItem,
    Address,
    Cart,
    ChangeLineItemQuantity,
    Order,
    RemoveLineItem,
    ResourceIdentifier,
    SetBillingAddress,
    SetCustomerEmail,
    SetShippingAddress,
    SetShippingMethod,
)

log = get_logger(__name__)

ORDER_NUMBER_MIN = 10 ** 7
ORDER_NUMBER_MAX = 10 ** 10 - 1

AddressInput = Union[Address, Dict[str, Any]]


def generate_order_number() -> str:
    """Returns a random order number in [10^7, 10^10 - 1), i.e. 8 to 10 digits."""
    return str(ORDER_NUMBER_MIN + secrets.randbelow(ORDER_NUMBER_MAX - ORDER_NUMBER_MIN))


def parse_version(value: Union[int, str]) -> int:
    """
    Normalizes a version token received from the caller.

    The GraphQL wire carries versions as strings, so decimal strings are accepted.

    Raises:
        ValidationError: If the value is not a non-negative integer.
    """
    if isinstance(value, bool):
        raise ValidationError(f"Invalid version: {value!r}")
    if isinstance(value, int):
        version = value
    elif isinstance(value, str) and value.strip().isascii() and value.strip().isdecimal():
        version = int(value.strip())
    else:
        raise ValidationError(f"Invalid version: {value!r}")
    if version < 0:
        raise ValidationError(f"Invalid version: {value!r}")
    return version


def _require_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}")
    return quantity


def _build(action_cls, **fields):
    try:
        return action_cls(**fields)
    except pydantic.ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
        )
        raise ValidationError(f"Invalid {action_cls.__name__} payload ({problems})") from e


class CartPipeline:
    """
    Orchestrates versioned cart mutations against the commerce platform.

    Args:
        commerce (CommerceClient): Commerce platform client handle.
        currency (str): Currency of newly created carts.
    """
    def __init__(self, commerce: CommerceClient, currency: str = "EUR"):
        self.commerce = commerce
        self.currency = currency

    async def create_cart(self, product_id: str, quantity: int = 1, variant_id: int = 1) -> Cart:
        """Creates a cart holding its first line item."""
        _require_quantity(quantity)
        if not product_id:
            raise ValidationError("productId is required")
        line_item = {"productId": product_id, "variantId": variant_id, "quantity": quantity}
        cart = await self.commerce.create_cart(self.currency, line_item)
        log.info(f"[Cart: {cart.id}] Created with product {product_id} (version {cart.version}).")
        return cart

    async def get_cart(self, cart_id: str) -> Cart:
        return await self.commerce.get_cart(cart_id)

    async def _apply(self, cart_id: str, expected_version: Union[int, str], action) -> Cart:
        version = parse_version(expected_version)
        log.info(f"[Cart: {cart_id}] Applying '{action.action}' at version {version}.")
        cart = await self.commerce.update_cart(cart_id, version, action)
        log.info(f"[Cart: {cart_id}] '{action.action}' applied, now at version {cart.version}.")
        return cart

    async def add_line_item(self, cart_id: str, expected_version: Union[int, str], product_id: str,
                            quantity: int = 1, variant_id: int = 1) -> Cart:
        _require_quantity(quantity)
        action = _build(AddLineItem, productId=product_id, variantId=variant_id, quantity=quantity)
        return await self._apply(cart_id, expected_version, action)

    async def remove_line_item(self, cart_id: str, expected_version: Union[int, str], line_item_id: str) -> Cart:
        action = _build(RemoveLineItem, lineItemId=line_item_id)
        return await self._apply(cart_id, expected_version, action)

    async def change_line_item_quantity(self, cart_id: str, expected_version: Union[int, str],
                                        line_item_id: str, quantity: int) -> Cart:
        _require_quantity(quantity)
        action = _build(ChangeLineItemQuantity, lineItemId=line_item_id, quantity=quantity)
        return await self._apply(cart_id, expected_version, action)

    async def set_shipping_address(self, cart_id: str, expected_version: Union[int, str], address: AddressInput) -> Cart:
        action = _build(SetShippingAddress, address=address)
        return await self._apply(cart_id, expected_version, action)

    async def set_billing_address(self, cart_id: str, expected_version: Union[int, str], address: AddressInput) -> Cart:
        action = _build(SetBillingAddress, address=address)
        return await self._apply(cart_id, expected_version, action)

    async def set_shipping_method(self, cart_id: str, expected_version: Union[int, str], shipping_method_id: str) -> Cart:
        method = _build(ResourceIdentifier, id=shipping_method_id, typeId="shipping-method")
        action = _build(SetShippingMethod, shippingMethod=method)
        return await self._apply(cart_id, expected_version, action)

    async def set_guest_email(self, cart_id: str, expected_version: Union[int, str], email: str) -> Cart:
        """Records the guest's email on the cart; the order later inherits it as `customerEmail`."""
        action = _build(SetCustomerEmail, email=email)
        return await self._apply(cart_id, expected_version, action)

    async def create_order(self, cart_id: str, expected_version: Union[int, str]) -> Order:
        """
        Turns the cart, at exactly `expected_version`, into an order.

        Args:
            cart_id (str): Cart to order.
            expected_version (int | str): Cart version the caller last observed.

        Returns:
            Order: The created order, carrying a generated order number if the platform kept it.

        Raises:
            ConflictError: If the cart changed since `expected_version`.
            ValidationError: If the version is malformed.
        """
        version = parse_version(expected_version)
        order_number = generate_order_number()
        log.info(f"[Cart: {cart_id}] Creating order {order_number} from version {version}.")
        order = await self.commerce.create_order(cart_id, version, order_number)
        if not order.orderNumber:
            order.orderNumber = order_number
        log.info(f"[Order: {order.id}] Created from cart {cart_id} (number {order.orderNumber}).")
        return order
