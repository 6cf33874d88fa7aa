"""Errors raised across the quoting pipeline."""


class AutoQuoteError(RuntimeError):
    """Base class for pipeline failures."""


class ExtractionTimeout(AutoQuoteError):
    """The AI extractor did not answer within its timeout."""


class QuoteGenerationError(AutoQuoteError):
    """Raised when the quotation PDF cannot be rendered or saved."""


class DispatchError(AutoQuoteError):
    """Raised when the quote email cannot be delivered."""


class MailboxError(AutoQuoteError):
    """Raised when a mailbox cannot be opened or searched."""


class InvalidStatusTransition(AutoQuoteError):
    """A processed-email status change would move the record backwards."""


class ValidationError(AutoQuoteError):
    """Input for a manual submission is missing required fields."""
