"""Error taxonomy shared by the post workflow, the assistant and the API layer.

Every failure the core can report is an ``AppError`` subclass carrying a
machine-readable ``code``, the HTTP status the API should answer with, a
short user-facing message (the label's apps are in Italian) and a
``retryable`` flag so clients know when offering "try again" makes sense.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Optional


class AppError(Exception):
    """Base error for every expected failure."""

    code = "UNKNOWN_ERROR"
    status_code = 500
    retryable = False
    user_message = "Si è verificato un errore imprevisto."

    def __init__(self, message: Optional[str] = None, details: Optional[dict[str, Any]] = None):
        self.message = message or self.user_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "user_message": self.user_message,
            "retryable": self.retryable,
            "details": self.details,
        }


class ValidationError(AppError):
    """Malformed input: empty or oversized message, missing rejection reason, bad fields."""

    code = "VALIDATION_ERROR"
    status_code = 400
    user_message = "Controlla i dati inseriti."

    _REASON_MESSAGES = {
        "message_empty": "Scrivi un messaggio.",
        "message_too_long": "Il messaggio è troppo lungo (max 2000 caratteri).",
        "reason_required": "Il motivo del rifiuto è obbligatorio.",
    }

    def __init__(
        self,
        message: Optional[str] = None,
        reason: str = "invalid",
        details: Optional[dict[str, Any]] = None,
    ):
        self.reason = reason
        # Instance-level override so the UI can tell "empty" and "too long" apart
        self.user_message = self._REASON_MESSAGES.get(reason, ValidationError.user_message)
        super().__init__(message, {"reason": reason, **(details or {})})


class Unauthorized(AppError):
    """No usable identity reached the API."""

    code = "AUTH_REQUIRED"
    status_code = 401
    user_message = "Effettua l'accesso per continuare."


class Forbidden(AppError):
    code = "AUTH_FORBIDDEN"
    status_code = 403
    user_message = "Non hai i permessi per questa azione."


class NotFound(AppError):
    code = "NOT_FOUND"
    status_code = 404
    user_message = "Elemento non trovato."


class Conflict(AppError):
    code = "CONFLICT"
    status_code = 409
    user_message = "Conflitto con i dati esistenti."


class InvalidStatusTransition(AppError):
    code = "INVALID_STATUS_TRANSITION"
    status_code = 400
    user_message = "Transizione di stato non valida."

    def __init__(self, from_status: Optional[str], to_status: str):
        if from_status is None:
            # Caller may not see the post, so its current status stays out of the error
            super().__init__(f"Invalid status transition to {to_status}", {"to_status": to_status})
            return
        super().__init__(
            f"Invalid status transition: {from_status} -> {to_status}",
            {"from_status": from_status, "to_status": to_status},
        )


class PostLocked(AppError):
    code = "POST_LOCKED"
    status_code = 400
    user_message = "Questo post non può essere modificato."


class AgentDisabled(AppError):
    code = "AI_AGENT_DISABLED"
    status_code = 403
    user_message = "L'assistente AI non è ancora attivo per te."


class RateLimited(AppError):
    """Daily quota exhausted; details carry the usage snapshot and the reset instant."""

    code = "AI_RATE_LIMITED"
    status_code = 429
    user_message = "Hai raggiunto il limite giornaliero di messaggi."

    def __init__(self, daily_limit: int, used_today: int, now: Optional[datetime] = None):
        self.daily_limit = daily_limit
        self.used_today = used_today
        self.remaining = max(daily_limit - used_today, 0)
        self.resets_at = next_utc_midnight(now)
        super().__init__(
            f"Daily message limit reached ({used_today}/{daily_limit})",
            {
                "daily_limit": daily_limit,
                "used_today": used_today,
                "remaining": self.remaining,
                "resets_at": self.resets_at.isoformat(),
            },
        )


class ServiceUnavailable(AppError):
    code = "AI_SERVICE_UNAVAILABLE"
    status_code = 502
    retryable = True
    user_message = "Il servizio AI non è disponibile al momento. Riprova tra poco."


def next_utc_midnight(now: Optional[datetime] = None) -> datetime:
    """Return the instant the daily quota resets (next 00:00 UTC)."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    tomorrow = (now.astimezone(timezone.utc) + timedelta(days=1)).date()
    return datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=timezone.utc)
