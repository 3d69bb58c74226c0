"""
Error taxonomy for the subscription service.

Every kind that can reach a client carries the HTTP status and the message
rendered at the boundary. Internal detail stays in the exception chain and
the logs.
"""


class NewsletterError(Exception):
    """Base class for all service errors."""

    status_code = 500
    client_message = "Internal server error"


class ConflictError(NewsletterError):
    """Email is already subscribed (unique constraint violation)."""

    status_code = 409
    client_message = "Email is already subscribed"


class NotFoundError(NewsletterError):
    """Unsubscribe target does not exist."""

    status_code = 404
    client_message = "Email is not subscribed"


class StoreUnavailable(NewsletterError):
    """Connection, pool or query failure in the subscriber store."""

    status_code = 500
    client_message = "Subscriber store unavailable"


class MailError(NewsletterError):
    """The SMTP relay rejected or failed a send."""

    status_code = 502
    client_message = "Failed to send email"


class ConfigError(NewsletterError):
    """Missing or invalid startup configuration. Fatal at boot."""
