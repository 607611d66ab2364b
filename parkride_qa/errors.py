"""
Error types for the park-and-ride Q&A chatbot.
"""


class ChatbotError(Exception):
    """Base class for all chatbot errors."""

    status_code = 500
    public_message = "Internal server error"


class ConfigurationError(ChatbotError):
    """Required external credentials or settings are missing."""

    status_code = 500
    public_message = "Service is not configured"


class ValidationError(ChatbotError):
    """A query or upload was empty or malformed."""

    status_code = 400

    @property
    def public_message(self) -> str:
        return str(self)


class ParseError(ChatbotError):
    """A knowledge CSV could not be parsed. Ingestion is aborted."""

    status_code = 400

    def __init__(self, message: str, line: int | None = None):
        self.line = line
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(message)

    @property
    def public_message(self) -> str:
        return str(self)


class UpstreamError(ChatbotError):
    """An embedding, generation or vector index call failed."""

    status_code = 502
    public_message = "The answer service is temporarily unavailable"
