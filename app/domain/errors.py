from __future__ import annotations


class PaymentError(Exception):
    """Base error for payment operations; carries the HTTP status to surface."""

    status_code: int = 500

    def __init__(self, message: str, *, provider: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider


class ValidationError(PaymentError):
    """Bad caller input or missing provider configuration for the request."""

    status_code = 400


class UpstreamError(PaymentError):
    """Transient gateway or network failure."""

    status_code = 502

    def __init__(self, message: str, *, provider: str | None = None, upstream_status: int | None = None) -> None:
        super().__init__(message, provider=provider)
        self.upstream_status = upstream_status


class UpstreamAuthError(UpstreamError):
    """Gateway rejected our credentials (401/403)."""


class UpstreamNotFound(UpstreamError):
    """Gateway reported the resource does not exist."""

    status_code = 404


class ConfigError(PaymentError):
    status_code = 500


class ProviderNotFoundError(PaymentError):
    status_code = 404


class NoActiveProviderError(PaymentError):
    status_code = 503


class WebhookValidationError(PaymentError):
    """Webhook failed signature or shape validation."""

    status_code = 400
