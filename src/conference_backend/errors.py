"""
Error taxonomy shared by the store, the review services and the HTTP layer.

Every error carries the HTTP status it maps to so the API layer can translate
it without a lookup table. ``PaperIdExhaustedError`` is a conflict in kind but
is answered with 503: it reflects contention, not bad input.
"""

from __future__ import annotations


class ConferenceError(Exception):
    http_status = 500
    code = "server_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ConferenceError):
    http_status = 400
    code = "validation_error"


class NoActiveRecipientsError(ValidationError):
    code = "no_active_recipients"

    def __init__(self, message: str = "No active committee members found") -> None:
        super().__init__(message)


class ConflictError(ConferenceError):
    http_status = 409
    code = "conflict"


class DuplicatePaperIdError(ConflictError):
    code = "duplicate_paper_id"


class DuplicateEmailError(ConflictError):
    code = "duplicate_email"


class PaperIdExhaustedError(ConflictError):
    http_status = 503
    code = "paper_id_unavailable"

    def __init__(self, attempts: int) -> None:
        super().__init__(
            f"Could not allocate a unique paper id after {attempts} attempts; please retry"
        )
        self.attempts = attempts


class NotFoundError(ConferenceError):
    http_status = 404
    code = "not_found"


class DependencyUnavailable(ConferenceError):
    http_status = 503
    code = "dependency_unavailable"


class TransportTimeout(DependencyUnavailable):
    code = "mail_timeout"


class MailDeliveryError(ConferenceError):
    http_status = 502
    code = "mail_delivery_failed"


class ProviderRateLimited(MailDeliveryError):
    http_status = 503
    code = "mail_rate_limited"


class MailerBlockedError(ProviderRateLimited):
    code = "mailer_cooling_down"
