import re

import pydantic
import pytest

from storefront_gateway.cart_pipeline import generate_order_number, parse_version
from storefront_gateway.errors import ConflictError, NotFoundError, ValidationError
from storefront_gateway.models import CartAction

ADDRESS = {
    "firstName": "Ada",
    "lastName": "Lovelace",
    "streetName": "Main Street 1",
    "city": "Berlin",
    "postalCode": "10115",
    "country": "DE",
    "phone": "+49 30 123456",
}


def quantities(cart):
    return {item.productId: item.quantity for item in cart.lineItems}


async def test_create_cart_then_get_cart_round_trips(pipeline):
    created = await pipeline.create_cart("prod-1")

    fetched = await pipeline.get_cart(created.id)

    assert fetched.version == created.version
    assert fetched.lineItems == created.lineItems
    assert quantities(fetched) == {"prod-1": 1}


async def test_each_mutation_is_one_single_action_update(pipeline, commerce):
    cart = await pipeline.create_cart("prod-1")

    cart = await pipeline.add_line_item(cart.id, cart.version, "prod-2")
    cart = await pipeline.set_shipping_address(cart.id, cart.version, ADDRESS)
    cart = await pipeline.set_billing_address(cart.id, cart.version, ADDRESS)
    cart = await pipeline.set_shipping_method(cart.id, cart.version, "ship-standard")
    cart = await pipeline.set_guest_email(cart.id, cart.version, "guest@example.com")

    updates = [call for call in commerce.calls if call[0] == "updateCart"]
    assert [call[3].action for call in updates] == [
        "addLineItem",
        "setShippingAddress",
        "setBillingAddress",
        "setShippingMethod",
        "setCustomerEmail",
    ]
    assert [call[2] for call in updates] == [1, 2, 3, 4, 5]
    assert cart.version == 6
    assert cart.shippingAddress.city == "Berlin"
    assert cart.billingAddress.country == "DE"
    assert cart.shippingInfo["shippingMethod"] == {"id": "ship-standard", "typeId": "shipping-method"}
    assert cart.customerEmail == "guest@example.com"


async def test_stale_version_is_a_conflict_and_leaves_cart_untouched(pipeline):
    cart = await pipeline.create_cart("prod-1")
    await pipeline.add_line_item(cart.id, cart.version, "prod-2")
    before = await pipeline.get_cart(cart.id)

    with pytest.raises(ConflictError) as excinfo:
        await pipeline.add_line_item(cart.id, cart.version, "prod-3")

    assert excinfo.value.current_version == before.version
    after = await pipeline.get_cart(cart.id)
    assert after == before


async def test_replaying_an_accepted_update_is_rejected_not_double_applied(pipeline):
    cart = await pipeline.create_cart("prod-1")
    line_item_id = cart.lineItems[0].id

    updated = await pipeline.change_line_item_quantity(cart.id, cart.version, line_item_id, 3)
    with pytest.raises(ConflictError):
        await pipeline.add_line_item(cart.id, cart.version, "prod-1", quantity=2)

    assert quantities(await pipeline.get_cart(cart.id)) == quantities(updated) == {"prod-1": 3}


async def test_quantities_follow_the_applied_deltas(pipeline):
    cart = await pipeline.create_cart("prod-1", quantity=2)
    cart = await pipeline.add_line_item(cart.id, cart.version, "prod-1", quantity=3)
    cart = await pipeline.add_line_item(cart.id, cart.version, "prod-2")
    cart = await pipeline.add_line_item(cart.id, cart.version, "prod-2", quantity=4)
    assert quantities(cart) == {"prod-1": 5, "prod-2": 5}
    assert cart.totalLineItemQuantity == 10

    prod_2 = next(item for item in cart.lineItems if item.productId == "prod-2")
    cart = await pipeline.change_line_item_quantity(cart.id, cart.version, prod_2.id, 1)
    assert quantities(cart) == {"prod-1": 5, "prod-2": 1}

    cart = await pipeline.remove_line_item(cart.id, str(cart.version), prod_2.id)
    assert quantities(cart) == {"prod-1": 5}
    assert cart.totalLineItemQuantity == 5


@pytest.mark.parametrize("version", ["abc", "", "1.5", "-1", "²", "٣", -1, None, True, 2.0])
async def test_malformed_version_is_rejected_before_any_call(pipeline, commerce, version):
    cart = await pipeline.create_cart("prod-1")

    with pytest.raises(ValidationError):
        await pipeline.add_line_item(cart.id, version, "prod-2")

    assert not [call for call in commerce.calls if call[0] == "updateCart"]


def test_parse_version_accepts_decimal_strings():
    assert parse_version("7") == 7
    assert parse_version(" 12 ") == 12
    assert parse_version(0) == 0


@pytest.mark.parametrize("quantity", [0, -2, True, 1.5, "3"])
async def test_quantity_must_be_a_positive_integer(pipeline, quantity):
    cart = await pipeline.create_cart("prod-1")

    with pytest.raises(ValidationError):
        await pipeline.change_line_item_quantity(cart.id, cart.version, cart.lineItems[0].id, quantity)
    with pytest.raises(ValidationError):
        await pipeline.add_line_item(cart.id, cart.version, "prod-2", quantity=quantity)


async def test_address_without_country_is_rejected(pipeline):
    cart = await pipeline.create_cart("prod-1")
    address = {key: value for key, value in ADDRESS.items() if key != "country"}

    with pytest.raises(ValidationError) as excinfo:
        await pipeline.set_shipping_address(cart.id, cart.version, address)

    assert "country" in excinfo.value.message


async def test_address_fields_are_free_form(pipeline):
    cart = await pipeline.create_cart("prod-1")

    cart = await pipeline.set_billing_address(cart.id, cart.version, {"country": "DE", "postalCode": "not a zip"})

    assert cart.billingAddress.postalCode == "not a zip"
    assert cart.billingAddress.streetName is None


async def test_unknown_cart_is_not_found(pipeline):
    with pytest.raises(NotFoundError):
        await pipeline.add_line_item("missing", 1, "prod-1")


def test_action_taxonomy_is_closed():
    adapter = pydantic.TypeAdapter(CartAction)

    action = adapter.validate_python({"action": "removeLineItem", "lineItemId": "li-1"})
    assert action.lineItemId == "li-1"

    with pytest.raises(pydantic.ValidationError):
        adapter.validate_python({"action": "recalculate"})


async def test_create_order_from_cart_at_current_version(pipeline):
    cart = await pipeline.create_cart("prod-1")
    cart = await pipeline.set_guest_email(cart.id, cart.version, "guest@example.com")

    order = await pipeline.create_order(cart.id, str(cart.version))

    assert re.match(r"^\d{7,10}$", order.orderNumber)
    assert order.customerEmail == "guest@example.com"
    assert [item.productId for item in order.lineItems] == ["prod-1"]


async def test_create_order_with_stale_version_fails(pipeline, commerce):
    cart = await pipeline.create_cart("prod-1")
    await pipeline.add_line_item(cart.id, cart.version, "prod-2")

    with pytest.raises(ConflictError):
        await pipeline.create_order(cart.id, cart.version)

    assert commerce.orders == {}


async def test_order_number_is_filled_in_when_the_platform_omits_it(pipeline, commerce):
    cart = await pipeline.create_cart("prod-1")
    original = commerce.create_order

    async def create_without_number(cart_id, expected_version, order_number):
        order = await original(cart_id, expected_version, order_number)
        order.orderNumber = None
        return order

    commerce.create_order = create_without_number
    order = await pipeline.create_order(cart.id, cart.version)

    assert re.match(r"^\d{7,10}$", order.orderNumber)


def test_order_numbers_are_in_range_and_do_not_repeat():
    numbers = [generate_order_number() for _ in range(1000)]

    assert all(re.match(r"^\d{7,10}$", number) for number in numbers)
    assert all(10 ** 7 <= int(number) < 10 ** 10 - 1 for number in numbers)
    assert len(set(numbers)) == 1000
