"""
This module provides communication clients for the external platforms behind the gateway:
- Commerce Platform (REST API): catalog, carts, orders, customers, OAuth
- Identity Provider (REST admin API): token verification and user records
Each class encapsulates its protocol logic, error translation, and connection management.

Clients never return `None` to signal failure: every error response or transport failure
is logged and re-raised as a taxonomy error (see `errors.py`) carrying the operation name.
"""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from .config import Settings
from .errors import (
    GatewayError,
    NotFoundError,
    UnauthenticatedError,
    UpstreamError,
    map_http_error,
    wrap_transport_error,
)
from .logging_config import get_logger
from .models import (
    AccessToken,
    Cart,
    CartAction,
    Customer,
    IdentityRecord,
    Order,
    OrderAction,
    SessionInfo,
)

log = get_logger(__name__)


def build_http_client(settings: Settings) -> httpx.AsyncClient:
    """Creates the shared async HTTP client with the configured timeouts."""
    timeout_config = httpx.Timeout(settings.http_timeout, read=settings.http_read_timeout)
    return httpx.AsyncClient(timeout=timeout_config)


async def _send(client: httpx.AsyncClient, operation: str, method: str, url: str, **kwargs) -> httpx.Response:
    """
    Issues one request and translates failures into taxonomy errors.

    Raises:
        GatewayError: Any subclass matching the HTTP status, or UpstreamError on transport failure.
    """
    try:
        response = await client.request(method, url, **kwargs)
        response.raise_for_status()
        return response
    except httpx.HTTPStatusError as e:
        error = map_http_error(operation, e.response)
        if e.response.status_code >= 500:
            log.error(f"[{operation}] Upstream failure (HTTP {e.response.status_code}): {error.message}")
        else:
            log.warning(f"[{operation}] Request rejected (HTTP {e.response.status_code}): {error.message}")
        raise error from e
    except httpx.HTTPError as e:
        log.error(f"[{operation}] Platform unreachable: {e!r}")
        raise wrap_transport_error(operation, e) from e


def _read(operation: str, response: httpx.Response, parse: Optional[Callable[[Any], Any]] = None) -> Any:
    """
    Decodes a successful response body and optionally converts it with `parse`.

    Raises:
        UpstreamError: If the body is not JSON or does not have the expected shape.
    """
    try:
        body = response.json()
        return parse(body) if parse else body
    except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
        # pydantic.ValidationError and json.JSONDecodeError are both ValueErrors
        log.error(f"[{operation}] Malformed response (HTTP {response.status_code}): {e!r}")
        raise UpstreamError(f"Malformed response from platform: {type(e).__name__}",
                            operation=operation, status_code=response.status_code) from e


def _results(body: Dict[str, Any]) -> List[Dict[str, Any]]:
    return list(body["results"])


def _order_page(body: Dict[str, Any]) -> Tuple[List[Order], Optional[int]]:
    orders = [Order.model_validate(order) for order in body["results"]]
    total = body.get("total")
    return orders, int(total) if total is not None else None


# --- Commerce Platform OAuth (client credentials) ---
class PlatformTokenProvider:
    """
    Obtains and caches the API client's access token (client-credentials flow).
    The token is refreshed shortly before it expires.
    """
    EXPIRY_MARGIN = 60

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self.settings = settings
        self.client = client
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    async def token(self) -> str:
        async with self._lock:
            if self._token is None or time.monotonic() >= self._expires_at:
                await self._refresh()
            return self._token

    async def _refresh(self):
        data = {"grant_type": "client_credentials"}
        if self.settings.scopes:
            data["scope"] = self.settings.scopes
        response = await _send(
            self.client,
            "clientCredentialsToken",
            "POST",
            f"{self.settings.auth_url}/oauth/token",
            data=data,
            auth=(self.settings.client_id, self.settings.client_secret),
        )
        grant = _read("clientCredentialsToken", response, AccessToken.model_validate)
        self._token = grant.access_token
        self._expires_at = time.monotonic() + max((grant.expires_in or 0) - self.EXPIRY_MARGIN, 0)
        log.info("Commerce platform API token refreshed.")


# --- Commerce Client (REST) ---
class CommerceClient:
    """
    Client for the Commerce Platform (REST API).
    Handles catalog queries, versioned cart/order updates, customer signup and sessions.
    """
    ORDER_PAGE_SIZE = 500

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None,
                 tokens: Optional[PlatformTokenProvider] = None):
        """
        Args:
            settings (Settings): Platform addresses and API client credentials.
            client (httpx.AsyncClient, optional): Shared HTTP client; created from settings if omitted.
            tokens (PlatformTokenProvider, optional): API token source; created if omitted.
        """
        self.settings = settings
        self.client = client or build_http_client(settings)
        self.tokens = tokens or PlatformTokenProvider(settings, self.client)
        self.base_url = f"{settings.api_url}/{settings.project_key}"

    async def aclose(self):
        """Closes the HTTP client session."""
        await self.client.aclose()

    async def _call(self, operation: str, method: str, path: str,
                    parse: Optional[Callable[[Any], Any]] = None, **kwargs) -> Any:
        headers = kwargs.pop("headers", {})
        if "Authorization" not in headers:
            headers["Authorization"] = f"Bearer {await self.tokens.token()}"
        response = await _send(self.client, operation, method, f"{self.base_url}{path}", headers=headers, **kwargs)
        return _read(operation, response, parse)

    # Catalog

    async def list_products(self) -> List[Dict[str, Any]]:
        return await self._call("listProducts", "GET", "/product-projections", parse=_results)

    async def get_product(self, product_id: str) -> Dict[str, Any]:
        return await self._call("getProduct", "GET", f"/product-projections/{product_id}", parse=dict)

    async def search_products(self, text: str, limit: int = 20, fuzzy: bool = True) -> List[Dict[str, Any]]:
        params = {"text.en": text, "limit": limit, "fuzzy": str(fuzzy).lower()}
        return await self._call("searchProducts", "GET", "/product-projections/search", parse=_results, params=params)

    async def suggest(self, prefix: str) -> List[str]:
        params = {"searchKeywords.en": prefix, "fuzzy": "true"}
        return await self._call(
            "suggest", "GET", "/product-projections/suggest", params=params,
            parse=lambda body: [suggestion["text"] for suggestion in body.get("searchKeywords.en", [])],
        )

    # Carts

    async def create_cart(self, currency: str, initial_line_item: Dict[str, Any]) -> Cart:
        draft = {"currency": currency, "lineItems": [initial_line_item]}
        return await self._call("createCart", "POST", "/carts", parse=Cart.model_validate, json=draft)

    async def get_cart(self, cart_id: str) -> Cart:
        return await self._call("getCart", "GET", f"/carts/{cart_id}", parse=Cart.model_validate)

    async def update_cart(self, cart_id: str, expected_version: int, action: CartAction) -> Cart:
        """
        Applies exactly one update action to a cart.

        Raises:
            ConflictError: If `expected_version` is stale.
        """
        payload = {"version": expected_version, "actions": [action.model_dump(exclude_none=True)]}
        return await self._call(action.action, "POST", f"/carts/{cart_id}", parse=Cart.model_validate, json=payload)

    # Orders

    async def create_order(self, cart_id: str, expected_version: int, order_number: str) -> Order:
        payload = {
            "cart": {"id": cart_id, "typeId": "cart"},
            "version": expected_version,
            "orderNumber": order_number,
        }
        return await self._call("createOrder", "POST", "/orders", parse=Order.model_validate, json=payload)

    async def list_orders(self, email: str) -> List[Order]:
        """
        Lists every order placed with `email`, following the platform's pages until `total` is reached.
        """
        escaped = email.replace("\\", "\\\\").replace('"', '\\"')
        orders: List[Order] = []
        while True:
            params = {
                "where": f'customerEmail="{escaped}"',
                "sort": "createdAt asc",
                "limit": self.ORDER_PAGE_SIZE,
                "offset": len(orders),
            }
            page, total = await self._call("listOrders", "GET", "/orders", parse=_order_page, params=params)
            orders.extend(page)
            if len(page) < self.ORDER_PAGE_SIZE or (total is not None and len(orders) >= total):
                break
        log.info(f"[Orders: {email}] Listed {len(orders)} order(s).")
        return orders

    async def update_order(self, order_id: str, expected_version: int, action: OrderAction) -> Order:
        payload = {"version": expected_version, "actions": [action.model_dump(exclude_none=True)]}
        return await self._call(action.action, "POST", f"/orders/{order_id}", parse=Order.model_validate, json=payload)

    # Customers and sessions

    async def signup_customer(self, email: str, password: str, name: Optional[str] = None,
                              custom_fields: Optional[Dict[str, Any]] = None) -> Customer:
        draft: Dict[str, Any] = {"email": email, "password": password}
        if name:
            draft["firstName"] = name
        if custom_fields:
            draft["custom"] = {
                "type": {"key": "customer-mobile-no", "typeId": "type"},
                "fields": custom_fields,
            }
        return await self._call("signupCustomer", "POST", "/me/signup", json=draft,
                                parse=lambda body: Customer.model_validate(body["customer"]))

    async def password_grant_token(self, username: str, password: str) -> AccessToken:
        """Exchanges customer credentials for a customer-scoped access token (password flow)."""
        data = {"grant_type": "password", "username": username, "password": password}
        if self.settings.scopes:
            data["scope"] = self.settings.scopes
        response = await _send(
            self.client,
            "passwordGrantToken",
            "POST",
            f"{self.settings.auth_url}/oauth/{self.settings.project_key}/customers/token",
            data=data,
            auth=(self.settings.client_id, self.settings.client_secret),
        )
        return _read("passwordGrantToken", response, AccessToken.model_validate)

    async def get_current_session(self, token: str) -> SessionInfo:
        """
        Resolves a customer session token via the platform's `me` endpoint.

        Raises:
            UnauthenticatedError: If the token is invalid or expired.
        """
        try:
            return await self._call("getCurrentSession", "GET", "/me", parse=SessionInfo.model_validate,
                                    headers={"Authorization": f"Bearer {token}"})
        except NotFoundError as e:
            raise UnauthenticatedError("Session token does not belong to a customer",
                                       operation="getCurrentSession", status_code=e.status_code) from e


# --- Identity Client (REST) ---
class IdentityClient:
    """
    Client for the Identity Provider's REST admin API.
    Verifies ID tokens and reads, updates and deletes identity records.
    """
    UNAUTHENTICATED_CODES = ("INVALID_ID_TOKEN", "TOKEN_EXPIRED", "USER_DISABLED", "CREDENTIAL_TOO_OLD_LOGIN_AGAIN")

    def __init__(self, settings: Settings, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings
        self.client = client or build_http_client(settings)
        self.base_url = f"{settings.identity_api_url}/v1/projects/{settings.identity_project_id}"

    async def aclose(self):
        await self.client.aclose()

    async def _call(self, operation: str, path: str, payload: Dict[str, Any], url: Optional[str] = None,
                    parse: Optional[Callable[[Any], Any]] = None) -> Any:
        headers = {}
        if self.settings.identity_access_token:
            headers["Authorization"] = f"Bearer {self.settings.identity_access_token}"
        params = {"key": self.settings.identity_api_key} if self.settings.identity_api_key else None
        try:
            response = await _send(self.client, operation, "POST", url or f"{self.base_url}{path}",
                                   json=payload, headers=headers, params=params)
        except GatewayError as e:
            raise self._refine(e) from e
        return _read(operation, response, parse)

    def _refine(self, error: GatewayError) -> GatewayError:
        # The admin API reports every failure as HTTP 400 with a symbolic message.
        message = error.message or ""
        if message.startswith("USER_NOT_FOUND") or message.startswith("EMAIL_NOT_FOUND"):
            return NotFoundError(message, operation=error.operation, status_code=error.status_code)
        if message.startswith(self.UNAUTHENTICATED_CODES):
            return UnauthenticatedError(message, operation=error.operation, status_code=error.status_code)
        return error

    async def _lookup(self, operation: str, payload: Dict[str, Any]) -> IdentityRecord:
        users = await self._call(operation, "/accounts:lookup", payload,
                                 parse=lambda body: [IdentityRecord.model_validate(user)
                                                     for user in body.get("users") or []])
        if not users:
            raise NotFoundError("No identity record matches the lookup", operation=operation, status_code=404)
        return users[0]

    async def verify_token(self, token: str) -> str:
        """
        Verifies an ID token and returns the uid it was issued for.

        Raises:
            UnauthenticatedError: If the token is invalid, expired or belongs to no user.
        """
        url = f"{self.settings.identity_api_url}/v1/accounts:lookup"
        try:
            uids = await self._call("verifyToken", "", {"idToken": token}, url=url,
                                    parse=lambda body: [user["localId"] for user in body.get("users") or []])
        except NotFoundError as e:
            raise UnauthenticatedError(e.message, operation="verifyToken") from e
        if not uids:
            raise UnauthenticatedError("Token does not belong to any user", operation="verifyToken")
        return uids[0]

    async def get_user(self, uid: str) -> IdentityRecord:
        return await self._lookup("getUser", {"localId": [uid]})

    async def get_user_by_email(self, email: str) -> IdentityRecord:
        """Raises NotFoundError when no record carries the email."""
        return await self._lookup("getUserByEmail", {"email": [email]})

    async def get_user_by_phone(self, phone: str) -> IdentityRecord:
        """Raises NotFoundError when no record carries the phone number."""
        return await self._lookup("getUserByPhone", {"phoneNumber": [phone]})

    async def update_user(self, uid: str, fields: Dict[str, Any]) -> IdentityRecord:
        await self._call("updateUser", "/accounts:update", {"localId": uid, **fields})
        log.info(f"[Identity: {uid}] Record updated ({', '.join(sorted(fields))}).")
        return await self.get_user(uid)

    async def delete_user(self, uid: str):
        await self._call("deleteUser", "/accounts:delete", {"localId": uid})
        log.info(f"[Identity: {uid}] Record deleted.")
