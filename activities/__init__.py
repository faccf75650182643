"""Activity definitions module."""

from activities.documents import (
    DocumentActivities,
    ReceiptLineInput,
    ResolveReceiptLinesInput,
    ResolveReceiptLinesOutput,
    AttemptAutoPostInput,
    AttemptAutoPostOutput,
)

__all__ = [
    "DocumentActivities",
    "ReceiptLineInput",
    "ResolveReceiptLinesInput",
    "ResolveReceiptLinesOutput",
    "AttemptAutoPostInput",
    "AttemptAutoPostOutput",
]
