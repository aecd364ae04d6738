"""Billing exception hierarchy.

Every error carries an HTTP status, a machine-readable ``code`` and a French
message that is safe to show to the end user. Technical detail goes to the
logs, never into ``message``.
"""

from fastapi import status


class BillingError(Exception):
    """Base class for all billing errors surfaced to API callers."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "billing_error"
    default_message: str = "Une erreur est survenue lors du traitement du paiement."
    retryable: bool = False

    def __init__(self, message: str | None = None, *, detail: str | None = None) -> None:
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(detail or self.message)


class PaymentNotReady(BillingError):
    """The payment is still pending; the webhook has probably not landed yet."""

    code = "payment_not_ready"
    default_message = (
        "Le paiement est en cours de traitement. Veuillez patienter quelques instants et réessayer."
    )
    retryable = True


class PaymentNotCompleted(BillingError):
    """The payment ended in a terminal non-successful state."""

    code = "payment_not_completed"
    default_message = "Paiement pas encore complété"


class PaymentNotFound(BillingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "payment_not_found"
    default_message = "Paiement non trouvé"


class PlanNotFound(BillingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "plan_not_found"
    default_message = "Plan non trouvé"


class SubscriptionNotFound(BillingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "subscription_not_found"
    default_message = "Aucun abonnement trouvé pour cette opération"


class UnsupportedOperationType(BillingError):
    code = "unsupported_operation_type"
    default_message = "Type de session non supporté"


class GatewayError(BillingError):
    """The provider is not configured or rejected the request."""

    status_code = status.HTTP_502_BAD_GATEWAY
    code = "gateway_error"
    default_message = "Le prestataire de paiement a refusé la demande. Veuillez réessayer."


class GatewayNotConfigured(GatewayError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "gateway_not_configured"
    default_message = "Ce moyen de paiement n'est pas disponible pour le moment."


class SignatureError(BillingError):
    """A webhook signature could not be verified."""

    status_code = status.HTTP_401_UNAUTHORIZED
    code = "invalid_signature"
    default_message = "Signature invalide"


class RateLimitExceeded(BillingError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = "rate_limited"
    default_message = "Trop de tentatives. Veuillez réessayer plus tard."


class StripeSignatureError(SignatureError):
    """Stripe answers a bad signature with 400 rather than 401."""

    status_code = status.HTTP_400_BAD_REQUEST


class InvalidWebhookPayload(BillingError):
    code = "invalid_webhook_payload"
    default_message = "Requête de notification invalide"


class UserNotFound(BillingError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "user_not_found"
    default_message = "Utilisateur non trouvé"


class AccessDenied(BillingError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    default_message = "Accès non autorisé"


class UpgradeNotAllowed(BillingError):
    code = "upgrade_not_allowed"
    default_message = "Vous ne pouvez que passer à un plan supérieur"


class SubscriptionExpired(BillingError):
    """Upgrades need time left on the current subscription; renewals do not."""

    code = "subscription_expired"
    default_message = "Votre abonnement actuel a expiré. Vous pouvez le renouveler."
