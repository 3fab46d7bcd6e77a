import itertools
from typing import Dict, List, Set

import pytest

from storefront_gateway.cart_pipeline import CartPipeline
from storefront_gateway.catalog import CatalogService
from storefront_gateway.errors import ConflictError, NotFoundError, UnauthenticatedError
from storefront_gateway.guest_orders import GuestOrderReconciler
from storefront_gateway.models import (
    AccessToken,
    Cart,
    Customer,
    IdentityRecord,
    LineItem,
    Order,
    SessionInfo,
)
from storefront_gateway.social_identity import CustomerRegistrar, SocialIdentityReconciler


class FakeCommerce:
    """In-memory commerce platform that enforces version checks like the real one."""

    def __init__(self):
        self.carts: Dict[str, Cart] = {}
        self.orders: Dict[str, Order] = {}
        self.sessions: Dict[str, SessionInfo] = {}
        self.products: List[dict] = []
        self.suggestions: List[str] = []
        self.customers: List[Customer] = []
        self.grants: List[tuple] = []
        self.calls: List[tuple] = []
        self.stale_orders: Set[str] = set()
        self._ids = itertools.count(1)

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids)}"

    @staticmethod
    def _recount(cart: Cart):
        cart.totalLineItemQuantity = sum(item.quantity for item in cart.lineItems) or None

    # Catalog

    async def list_products(self):
        return list(self.products)

    async def get_product(self, product_id):
        for product in self.products:
            if product["id"] == product_id:
                return product
        raise NotFoundError(f"Product {product_id} not found", operation="getProduct")

    async def search_products(self, text, limit=20, fuzzy=True):
        self.calls.append(("searchProducts", text, limit, fuzzy))
        return self.products[:limit]

    async def suggest(self, prefix):
        return [s for s in self.suggestions if s.startswith(prefix)]

    # Carts

    async def create_cart(self, currency, initial_line_item):
        cart_id = self._next_id("cart-")
        cart = Cart(id=cart_id, version=1, lineItems=[{
            "id": self._next_id("li-"),
            "productId": initial_line_item["productId"],
            "variant": {"id": initial_line_item.get("variantId", 1)},
            "quantity": initial_line_item.get("quantity", 1),
        }])
        self._recount(cart)
        self.carts[cart_id] = cart
        return cart.model_copy(deep=True)

    async def get_cart(self, cart_id):
        if cart_id not in self.carts:
            raise NotFoundError(f"Cart {cart_id} not found", operation="getCart")
        return self.carts[cart_id].model_copy(deep=True)

    async def update_cart(self, cart_id, expected_version, action):
        self.calls.append(("updateCart", cart_id, expected_version, action))
        cart = self.carts.get(cart_id)
        if cart is None:
            raise NotFoundError(f"Cart {cart_id} not found", operation=action.action)
        if cart.version != expected_version:
            raise ConflictError("Version mismatch", operation=action.action, current_version=cart.version)

        if action.action == "addLineItem":
            for item in cart.lineItems:
                if item.productId == action.productId and (item.variant or {}).get("id") == action.variantId:
                    item.quantity += action.quantity
                    break
            else:
                cart.lineItems.append(LineItem(
                    id=self._next_id("li-"),
                    productId=action.productId,
                    variant={"id": action.variantId},
                    quantity=action.quantity,
                ))
        elif action.action == "removeLineItem":
            cart.lineItems = [item for item in cart.lineItems if item.id != action.lineItemId]
        elif action.action == "changeLineItemQuantity":
            for item in cart.lineItems:
                if item.id == action.lineItemId:
                    item.quantity = action.quantity
        elif action.action == "setShippingAddress":
            cart.shippingAddress = action.address
        elif action.action == "setBillingAddress":
            cart.billingAddress = action.address
        elif action.action == "setShippingMethod":
            cart.shippingInfo = {"shippingMethod": action.shippingMethod.model_dump()}
        elif action.action == "setCustomerEmail":
            cart.customerEmail = action.email

        cart.version += 1
        self._recount(cart)
        self.carts[cart_id] = cart
        return cart.model_copy(deep=True)

    # Orders

    async def create_order(self, cart_id, expected_version, order_number):
        cart = self.carts.get(cart_id)
        if cart is None:
            raise NotFoundError(f"Cart {cart_id} not found", operation="createOrder")
        if cart.version != expected_version:
            raise ConflictError("Version mismatch", operation="createOrder", current_version=cart.version)
        order = Order(
            id=self._next_id("order-"),
            version=1,
            orderNumber=order_number,
            customerEmail=cart.customerEmail,
            lineItems=[item.model_dump() for item in cart.lineItems],
        )
        self.orders[order.id] = order
        return order.model_copy(deep=True)

    def add_order(self, order_id, email, customer_id=None, version=1):
        self.orders[order_id] = Order(id=order_id, version=version, customerEmail=email, customerId=customer_id)

    async def list_orders(self, email):
        return [order.model_copy(deep=True) for order in self.orders.values() if order.customerEmail == email]

    async def update_order(self, order_id, expected_version, action):
        self.calls.append(("updateOrder", order_id, expected_version, action))
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found", operation=action.action)
        if order_id in self.stale_orders:
            # someone else modified the order between listing and updating
            order.version += 1
        if order.version != expected_version:
            raise ConflictError("Version mismatch", operation=action.action, current_version=order.version)
        order.customerId = action.customerId
        order.version += 1
        return order.model_copy(deep=True)

    # Customers and sessions

    async def signup_customer(self, email, password, name=None, custom_fields=None):
        self.calls.append(("signupCustomer", email, password, name, custom_fields))
        customer = Customer(id=self._next_id("customer-"), email=email, firstName=name)
        self.customers.append(customer)
        return customer

    async def password_grant_token(self, username, password):
        self.grants.append((username, password))
        return AccessToken(access_token=f"session-for-{username.split('@')[0]}", expires_in=172800)

    async def get_current_session(self, token):
        if token not in self.sessions:
            raise UnauthenticatedError("invalid_token", operation="getCurrentSession", status_code=401)
        return self.sessions[token]

    async def aclose(self):
        pass


class FakeIdentity:
    """In-memory identity provider keyed by uid."""

    def __init__(self):
        self.users: Dict[str, IdentityRecord] = {}
        self.tokens: Dict[str, str] = {}
        self.updates: List[tuple] = []
        self.deleted: List[str] = []

    def add_user(self, uid, email=None, providers=(), phone=None, name=None, token=None):
        self.users[uid] = IdentityRecord(
            localId=uid,
            email=email,
            phoneNumber=phone,
            displayName=name,
            providerUserInfo=[{"providerId": provider_id, "email": provider_email}
                              for provider_id, provider_email in providers],
        )
        if token:
            self.tokens[token] = uid

    async def verify_token(self, token):
        if token not in self.tokens:
            raise UnauthenticatedError("INVALID_ID_TOKEN", operation="verifyToken")
        return self.tokens[token]

    async def get_user(self, uid):
        if uid not in self.users:
            raise NotFoundError("USER_NOT_FOUND", operation="getUser")
        return self.users[uid]

    async def get_user_by_email(self, email):
        for user in self.users.values():
            if user.email == email:
                return user
        raise NotFoundError("USER_NOT_FOUND", operation="getUserByEmail")

    async def get_user_by_phone(self, phone):
        for user in self.users.values():
            if user.phoneNumber == phone:
                return user
        raise NotFoundError("USER_NOT_FOUND", operation="getUserByPhone")

    async def update_user(self, uid, fields):
        self.updates.append((uid, fields))
        record = self.users[uid]
        self.users[uid] = record.model_copy(update=fields)
        return self.users[uid]

    async def delete_user(self, uid):
        self.deleted.append(uid)
        self.users.pop(uid, None)

    async def aclose(self):
        pass


@pytest.fixture
def commerce():
    return FakeCommerce()


@pytest.fixture
def identity():
    return FakeIdentity()


@pytest.fixture
def pipeline(commerce):
    return CartPipeline(commerce)


@pytest.fixture
def catalog(commerce):
    return CatalogService(commerce)


@pytest.fixture
def reconciler(identity):
    return SocialIdentityReconciler(identity)


@pytest.fixture
def registrar(commerce, identity):
    return CustomerRegistrar(commerce, identity)


@pytest.fixture
def guest_orders(commerce):
    return GuestOrderReconciler(commerce)
