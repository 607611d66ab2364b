"""
Utility functions for logging, redaction and console output.
"""

import re
import logging

LOGGER_NAME = "parkride_qa"


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """Set up logging with redaction filter."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(level)
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        handler.addFilter(RedactionFilter())
        logger.addHandler(handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a child logger of the package logger."""
    return logging.getLogger(f"{LOGGER_NAME}.{name}")


class RedactionFilter(logging.Filter):
    """Filter to redact customer contact details and keys from logs."""

    # Patterns to redact
    patterns = [
        (r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}", "[EMAIL_REDACTED]"),
        (r"\bsk-[a-zA-Z0-9_-]{20,}\b", "[API_KEY_REDACTED]"),
        # 03-1234-5678, 090-1234-5678, 0120-123-456
        (r"\b0\d{1,4}-\d{1,4}-\d{3,4}\b", "[PHONE_REDACTED]"),
        (r"\b0[789]0\d{8}\b", "[PHONE_REDACTED]"),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact sensitive data from log message."""
        message = record.getMessage()
        for pattern, replacement in self.patterns:
            message = re.sub(pattern, replacement, message)
        record.msg = message
        record.args = ()
        return True


def truncate_text(text: str, max_length: int = 100, suffix: str = "...") -> str:
    """Truncate text to max length with suffix."""
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix


def print_separator(char: str = "-", width: int = 70) -> None:
    print(char * width)


def print_section_header(title: str, width: int = 70) -> None:
    print()
    print(f"--- {title} " + "-" * max(0, width - len(title) - 5))


def format_context_badge(context: str) -> str:
    """Format a search context as a short console badge."""
    labels = {
        "default": "予約方法",
        "international_ng": "国際線制限",
        "vehicles_ng": "車両制限",
        "reservation_rules": "予約変更",
        "cancellation": "キャンセル",
        "fee_rules": "料金",
        "other_contexts": "その他",
    }
    return f"[{context}] {labels.get(context, '')}".rstrip()
