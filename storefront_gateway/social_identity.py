"""
social_identity.py — Social Identity Reconciliation and Customer Registration

This module decides, for a verified identity-provider token, whether the caller is a
first-time social signup, a returning social login, or a conflicting duplicate identity,
and applies the matching mutation on the identity store.

Reconciliation table (keyed on the number of providers linked to the provider email):

    providers | mutation                          | result
    ----------+-----------------------------------+--------------------------
        0     | set identity email to that email  | {"signupWithSocial": True}
        1     | none                              | {"loginWithSocial": True}
       >1     | delete the identity record by uid | {"signupWithSocial": False}

Customer registration shadow-registers each social user as a password customer on the
commerce platform and exchanges those credentials for a session token. The credentials
come from a `CredentialStrategy`; the only one shipped derives the password from the email,
which anyone knowing the email can reproduce. Swap the strategy for a federated grant
without touching the reconciliation above.
"""

from typing import Optional, Tuple

from .clients import CommerceClient, IdentityClient
from .errors import NotFoundError, ValidationError
from .logging_config import get_logger
from .models import AccessToken, SocialReconciliationResult, VerifiedIdentity

log = get_logger(__name__)

SESSION_COOKIE_NAME = "token"


def session_cookie_options() -> dict:
    """Cookie attributes for the customer session token (HTTP-only, cross-site)."""
    return {"httponly": True, "samesite": "none", "secure": True}


async def verify_identity(identity: IdentityClient, token: str) -> VerifiedIdentity:
    """
    Verifies an identity-provider token and resolves the identity behind it.

    The reconciliation email is the first linked provider's email, falling back to
    the record's own email.

    Raises:
        UnauthenticatedError: If the token cannot be verified.
        ValidationError: If the identity carries no email at all.
    """
    if not token:
        raise ValidationError("An identity token is required")
    uid = await identity.verify_token(token)
    record = await identity.get_user(uid)
    provider_emails = [provider.email for provider in record.providerData if provider.email]
    email = provider_emails[0] if provider_emails else record.email
    if not email:
        raise ValidationError(f"Identity {uid} has no email to reconcile")
    return VerifiedIdentity(
        uid=uid,
        email=email,
        providerEmails=provider_emails,
        displayName=record.displayName,
        phoneNumber=record.phoneNumber,
    )


class SocialIdentityReconciler:
    def __init__(self, identity: IdentityClient):
        self.identity = identity

    async def linked_providers(self, email: str) -> int:
        """Number of providers linked to the record owning `email` (0 if there is none)."""
        try:
            record = await self.identity.get_user_by_email(email)
        except NotFoundError:
            return 0
        return record.provider_count

    async def reconcile(self, verified: VerifiedIdentity) -> SocialReconciliationResult:
        """
        Applies the reconciliation table to an already verified identity.

        Args:
            verified (VerifiedIdentity): Output of `verify_identity`.

        Returns:
            SocialReconciliationResult: Exactly one flag set, see module docstring.
        """
        log_prefix = f"[Identity: {verified.uid}]"
        provider_count = await self.linked_providers(verified.email)
        log.info(f"{log_prefix} {provider_count} provider(s) linked to the social email.")

        if provider_count > 1:
            log.warning(f"{log_prefix} Email already linked to several providers. Deleting duplicate identity.")
            await self.identity.delete_user(verified.uid)
            return SocialReconciliationResult(signupWithSocial=False)

        if provider_count == 1:
            return SocialReconciliationResult(loginWithSocial=True)

        await self.identity.update_user(verified.uid, {"email": verified.email})
        log.info(f"{log_prefix} First social signup, identity email set.")
        return SocialReconciliationResult(signupWithSocial=True)

    async def reconcile_social_identity(self, token: str) -> SocialReconciliationResult:
        verified = await verify_identity(self.identity, token)
        return await self.reconcile(verified)

    async def check_existing_user(self, email: str, phone: Optional[str] = None) -> bool:
        """
        Tells whether an identity record exists for the email or, failing that, the phone number.
        """
        try:
            await self.identity.get_user_by_email(email)
            return True
        except NotFoundError:
            if not phone:
                return False
        try:
            await self.identity.get_user_by_phone(phone)
            return True
        except NotFoundError:
            return False


class CredentialStrategy:
    """Derives the commerce platform credentials of a shadow-registered social user."""

    def credentials_for(self, verified: VerifiedIdentity) -> Tuple[str, str]:
        raise NotImplementedError


class EmailAsPasswordCredentials(CredentialStrategy):
    """
    Username and password are both the identity's email.

    Inherited workaround for a commerce platform without social login; anyone who
    knows a customer's email can obtain a session for it.
    """

    def credentials_for(self, verified: VerifiedIdentity) -> Tuple[str, str]:
        log.warning(f"[Identity: {verified.uid}] Using email-as-password shadow credentials.")
        return verified.email, verified.email


class CustomerRegistrar:
    """
    Registers verified identities as commerce customers and issues their session tokens.

    Args:
        commerce (CommerceClient): Commerce platform client handle.
        identity (IdentityClient): Identity provider client handle.
        credentials (CredentialStrategy, optional): Shadow credential source.
    """
    def __init__(self, commerce: CommerceClient, identity: IdentityClient,
                 credentials: Optional[CredentialStrategy] = None):
        self.commerce = commerce
        self.identity = identity
        self.credentials = credentials or EmailAsPasswordCredentials()

    async def register_customer(self, verified: VerifiedIdentity) -> AccessToken:
        """
        Signs the identity up on the commerce platform, then logs it in.

        Returns:
            AccessToken: Customer session token obtained through the password grant.

        Raises:
            ConflictError: If the platform already has a customer with this email.
            UpstreamError: On transport failures.
        """
        username, password = self.credentials.credentials_for(verified)
        custom_fields = {"phoneNo": {"en": verified.phoneNumber or ""}}
        customer = await self.commerce.signup_customer(username, password, verified.displayName, custom_fields)
        log.info(f"[Identity: {verified.uid}] Registered as commerce customer {customer.id}.")
        return await self.commerce.password_grant_token(username, password)

    async def register_from_token(self, token: str) -> AccessToken:
        verified = await verify_identity(self.identity, token)
        return await self.register_customer(verified)

    async def issue_customer_token(self, token: str) -> AccessToken:
        """Issues a new session token for an identity that is already a commerce customer."""
        verified = await verify_identity(self.identity, token)
        username, password = self.credentials.credentials_for(verified)
        return await self.commerce.password_grant_token(username, password)
