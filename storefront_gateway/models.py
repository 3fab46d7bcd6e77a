"""
models.py — Data Models of the Storefront Gateway

This module defines the shapes exchanged with the commerce platform and the identity
provider, and the results returned by the orchestrators. It uses Pydantic models to get
validation of platform payloads and a closed set of cart/order update actions.

Field names follow the platforms' camelCase wire format. Platform payloads carry many
more fields than the gateway needs; those are kept (`extra="allow"`) and passed through.

Models:
    - Money, Address, LineItem, Cart, Order: commerce aggregates
    - Customer, AccessToken, SessionInfo: commerce customer/session data
    - ProviderInfo, IdentityRecord, VerifiedIdentity: identity provider data
    - CartAction, OrderAction: tagged update actions (one per versioned request)
    - SocialReconciliationResult, GuestOrderOutcome, GuestOrderReport: orchestration results
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class PlatformModel(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class Money(PlatformModel):
    centAmount: int
    currencyCode: str
    type: Optional[str] = None
    fractionDigits: Optional[int] = None


class Address(PlatformModel):
    """
    Shipping or billing address attached to a cart.

    All fields are free-form strings. Only `country` (two letter code) is required,
    because the commerce platform refuses addresses without it.
    """
    country: str = Field(..., min_length=1)
    firstName: Optional[str] = None
    lastName: Optional[str] = None
    streetName: Optional[str] = None
    city: Optional[str] = None
    postalCode: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class LineItem(PlatformModel):
    id: str
    productId: str
    quantity: int = Field(..., gt=0)
    variant: Optional[Dict[str, Any]] = None
    price: Optional[Dict[str, Any]] = None
    name: Optional[Dict[str, str]] = None


class Cart(PlatformModel):
    """
    The versioned cart aggregate.

    Attributes:
        id (str): Platform cart id.
        version (int): Optimistic-concurrency token; every update must carry it.
        lineItems (list[LineItem]): Ordered line items.
        totalLineItemQuantity (int | None): Sum of line item quantities (absent for empty carts).
    """
    id: str
    version: int
    lineItems: List[LineItem] = Field(default_factory=list)
    totalPrice: Optional[Money] = None
    taxedPrice: Optional[Dict[str, Any]] = None
    totalLineItemQuantity: Optional[int] = None
    shippingAddress: Optional[Address] = None
    billingAddress: Optional[Address] = None
    shippingInfo: Optional[Dict[str, Any]] = None
    customerEmail: Optional[str] = None
    customerId: Optional[str] = None
    cartState: Optional[str] = None


class Order(PlatformModel):
    id: str
    version: int
    orderNumber: Optional[str] = None
    customerEmail: Optional[str] = None
    customerId: Optional[str] = None
    lineItems: List[LineItem] = Field(default_factory=list)
    totalPrice: Optional[Money] = None
    orderState: Optional[str] = None

    @property
    def is_guest_order(self) -> bool:
        return bool(self.customerEmail) and not self.customerId


class Customer(PlatformModel):
    id: str
    version: Optional[int] = None
    email: str
    firstName: Optional[str] = None


class AccessToken(PlatformModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: Optional[int] = None
    scope: Optional[str] = None
    refresh_token: Optional[str] = None


class SessionInfo(PlatformModel):
    """The customer behind a session token, as reported by the platform's `me` endpoint."""
    id: str
    email: str
    version: Optional[int] = None


class ProviderInfo(PlatformModel):
    providerId: str
    email: Optional[str] = None
    rawId: Optional[str] = None


class IdentityRecord(PlatformModel):
    uid: str = Field(..., alias="localId")
    email: Optional[str] = None
    phoneNumber: Optional[str] = None
    displayName: Optional[str] = None
    providerData: List[ProviderInfo] = Field(default_factory=list, alias="providerUserInfo")

    @property
    def provider_count(self) -> int:
        return len(self.providerData)


class VerifiedIdentity(BaseModel):
    """
    A token already verified against the identity provider.

    Attributes:
        uid (str): Identity record id the token belongs to.
        email (str): Email used for reconciliation (first linked provider's email).
        providerEmails (list[str]): Emails reported by each linked provider.
        displayName (str | None): Name shown to the user, used on customer signup.
        phoneNumber (str | None): Phone number, stored on the commerce customer.
    """
    uid: str
    email: str
    providerEmails: List[str] = Field(default_factory=list)
    displayName: Optional[str] = None
    phoneNumber: Optional[str] = None


# --- Update actions (one per versioned request) ---

class AddLineItem(BaseModel):
    action: Literal["addLineItem"] = "addLineItem"
    productId: str
    variantId: int = 1
    quantity: int = Field(1, gt=0)


class RemoveLineItem(BaseModel):
    action: Literal["removeLineItem"] = "removeLineItem"
    lineItemId: str


class ChangeLineItemQuantity(BaseModel):
    action: Literal["changeLineItemQuantity"] = "changeLineItemQuantity"
    lineItemId: str
    quantity: int = Field(..., gt=0)


class SetShippingAddress(BaseModel):
    action: Literal["setShippingAddress"] = "setShippingAddress"
    address: Address


class SetBillingAddress(BaseModel):
    action: Literal["setBillingAddress"] = "setBillingAddress"
    address: Address


class ResourceIdentifier(BaseModel):
    id: str
    typeId: str


class SetShippingMethod(BaseModel):
    action: Literal["setShippingMethod"] = "setShippingMethod"
    shippingMethod: ResourceIdentifier


class SetCustomerEmail(BaseModel):
    action: Literal["setCustomerEmail"] = "setCustomerEmail"
    email: str = Field(..., min_length=3)


class SetCustomerId(BaseModel):
    action: Literal["setCustomerId"] = "setCustomerId"
    customerId: str


CartAction = Annotated[
    Union[
        AddLineItem,
        RemoveLineItem,
        ChangeLineItemQuantity,
        SetShippingAddress,
        SetBillingAddress,
        SetShippingMethod,
        SetCustomerEmail,
    ],
    Field(discriminator="action"),
]

OrderAction = SetCustomerId


# --- Orchestration results ---

class SocialReconciliationResult(BaseModel):
    """
    Outcome of the social identity state machine.

    Exactly one of the two flags is set:
        - signupWithSocial=True:  first social signup, identity email updated
        - loginWithSocial=True:   existing single-provider account
        - signupWithSocial=False: conflicting multi-provider identity, record deleted
    """
    signupWithSocial: Optional[bool] = None
    loginWithSocial: Optional[bool] = None

    def as_payload(self) -> Dict[str, bool]:
        return self.model_dump(exclude_none=True)


class GuestOrderOutcome(BaseModel):
    orderId: str
    ok: bool
    order: Optional[Order] = None
    errorCode: Optional[str] = None
    errorMessage: Optional[str] = None


class GuestOrderReport(BaseModel):
    customerId: str
    email: str
    outcomes: List[GuestOrderOutcome] = Field(default_factory=list)

    @property
    def succeeded(self) -> List[GuestOrderOutcome]:
        return [outcome for outcome in self.outcomes if outcome.ok]

    @property
    def failed(self) -> List[GuestOrderOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]
