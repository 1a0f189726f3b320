"""Exception hierarchy.

Infrastructure errors are transient and retried; collaborator errors surface
to whoever is waiting on the call.
"""


class MarketIntelError(Exception):
    """Base class for all errors raised by market_intel."""


class InfrastructureError(MarketIntelError):
    """Store or queue backend unreachable."""


class QueueError(InfrastructureError):
    """A task could not be enqueued or dequeued."""


class CollaboratorError(MarketIntelError):
    """An embedding / completion call failed or returned nothing usable."""


class ReportUnavailableError(MarketIntelError):
    """Report generation failed, or the caller gave up waiting for it."""


class ChatError(MarketIntelError):
    """The chat completion could not be produced."""


USER_FACING_MESSAGE = "System temporarily unavailable"
