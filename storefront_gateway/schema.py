"""
schema.py — GraphQL Schema of the Storefront Gateway

Thin strawberry layer over the orchestrators. Resolvers only unpack arguments, call one
orchestrator operation and shape the result; every failure leaves as a GraphQL error whose
`extensions.code` names the taxonomy error, so clients can tell "refetch and retry"
(CONFLICT) from "log in again" (UNAUTHENTICATED).

The orchestrators are taken from the request context (`info.context["services"]`).
"""

from typing import Any, Awaitable, List, Optional

import strawberry
from graphql import GraphQLError
from strawberry.scalars import JSON
from strawberry.types import Info

from .errors import GatewayError
from .social_identity import SESSION_COOKIE_NAME, session_cookie_options


async def _run(operation: Awaitable) -> Any:
    try:
        return await operation
    except GatewayError as e:
        raise GraphQLError(e.message, extensions={"code": e.code, "operation": e.operation}) from e


def _dump(model) -> Any:
    return model.model_dump(mode="json", exclude_none=True)


def _services(info: Info):
    return info.context["services"]


def _set_session_cookie(info: Info, access_token: str):
    info.context["response"].set_cookie(SESSION_COOKIE_NAME, access_token, **session_cookie_options())


@strawberry.input(name="AddresInput")
class AddressInput:
    country: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    street_name: Optional[str] = None
    city: Optional[str] = None
    postal_code: Optional[str] = None
    phone: Optional[str] = None

    def to_payload(self) -> dict:
        return {
            "country": self.country,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "streetName": self.street_name,
            "city": self.city,
            "postalCode": self.postal_code,
            "phone": self.phone,
        }


@strawberry.type
class Query:
    @strawberry.field
    async def products(self, info: Info) -> List[JSON]:
        return await _run(_services(info).catalog.fetch_products())

    @strawberry.field
    async def single_product(self, info: Info, id: str) -> JSON:
        return await _run(_services(info).catalog.fetch_product_by_id(id))

    @strawberry.field
    async def search_products(self, info: Info, query: Optional[str] = None) -> List[JSON]:
        return await _run(_services(info).catalog.search_products(query or ""))

    @strawberry.field
    async def search_suggestion(self, info: Info, keyword: str) -> List[str]:
        return await _run(_services(info).catalog.fetch_suggestions(keyword))

    @strawberry.field
    async def get_cart_by_id(self, info: Info, cart_id: str) -> JSON:
        return _dump(await _run(_services(info).carts.get_cart(cart_id)))

    @strawberry.field(name="verifyUserByTokenId")
    async def verify_user_by_token_id(self, info: Info) -> JSON:
        token = info.context["request"].cookies.get(SESSION_COOKIE_NAME)
        report = await _run(_services(info).guest_orders.reconcile_guest_orders(token))
        return _dump(report)


@strawberry.type
class Mutation:
    @strawberry.mutation
    async def create_cart(self, info: Info, product_id: str) -> JSON:
        return _dump(await _run(_services(info).carts.create_cart(product_id)))

    @strawberry.mutation
    async def add_items_to_cart(self, info: Info, product_id: str, cart_id: str, version_id: str) -> JSON:
        return _dump(await _run(_services(info).carts.add_line_item(cart_id, version_id, product_id)))

    @strawberry.mutation
    async def remove_item_from_cart(self, info: Info, line_item_id: str, cart_id: str, version_id: str) -> JSON:
        return _dump(await _run(_services(info).carts.remove_line_item(cart_id, version_id, line_item_id)))

    @strawberry.mutation
    async def change_cart_items_qty(self, info: Info, cart_id: str, version_id: str,
                                    line_item_id: str, quantity: int) -> JSON:
        cart = await _run(_services(info).carts.change_line_item_quantity(cart_id, version_id, line_item_id, quantity))
        return _dump(cart)

    @strawberry.mutation
    async def add_shipping_address(self, info: Info, addres_input: AddressInput, cart_id: str, version_id: str) -> JSON:
        cart = await _run(_services(info).carts.set_shipping_address(cart_id, version_id, addres_input.to_payload()))
        return _dump(cart)

    @strawberry.mutation
    async def add_billing_address(self, info: Info, addres_input: AddressInput, cart_id: str, version_id: str) -> JSON:
        cart = await _run(_services(info).carts.set_billing_address(cart_id, version_id, addres_input.to_payload()))
        return _dump(cart)

    # Existing storefront builds fetch the cart through a mutation; the query form is the preferred one.
    @strawberry.mutation
    async def get_cart_by_id(self, info: Info, cart_id: str) -> JSON:
        return _dump(await _run(_services(info).carts.get_cart(cart_id)))

    @strawberry.mutation
    async def add_shipping_method(self, info: Info, cart_id: str, version_id: str, shipping_method_id: str) -> JSON:
        cart = await _run(_services(info).carts.set_shipping_method(cart_id, version_id, shipping_method_id))
        return _dump(cart)

    @strawberry.mutation
    async def add_email_id_as_guest(self, info: Info, cart_id: str, version_id: str, email: str) -> JSON:
        return _dump(await _run(_services(info).carts.set_guest_email(cart_id, version_id, email)))

    @strawberry.mutation(name="generateOrderByCartID")
    async def generate_order_by_cart_id(self, info: Info, cart_id: str, version_id: str) -> JSON:
        return _dump(await _run(_services(info).carts.create_order(cart_id, version_id)))

    @strawberry.mutation
    async def verify_social_user(self, info: Info, token: str) -> JSON:
        result = await _run(_services(info).social.reconcile_social_identity(token))
        return result.as_payload()

    @strawberry.mutation
    async def create_customer(self, info: Info, token_id: str) -> JSON:
        access_token = await _run(_services(info).registrar.register_from_token(token_id))
        _set_session_cookie(info, access_token.access_token)
        return _dump(access_token)

    @strawberry.mutation
    async def generate_token(self, info: Info, token: str) -> JSON:
        access_token = await _run(_services(info).registrar.issue_customer_token(token))
        _set_session_cookie(info, access_token.access_token)
        return _dump(access_token)

    @strawberry.mutation
    async def verify_exist_user(self, info: Info, email: str, phone_number: str) -> JSON:
        exists = await _run(_services(info).social.check_existing_user(email, phone_number))
        return {"userExist": exists}


schema = strawberry.Schema(query=Query, mutation=Mutation)
