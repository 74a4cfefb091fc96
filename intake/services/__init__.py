"""Services package."""

from .document_store import DocumentStore
from .quota_ledger import QuotaLedger
from .attachment_store import AttachmentStore
from .session_manager import SessionManager
from .tool_aggregator import ToolAggregator

__all__ = [
    "DocumentStore",
    "QuotaLedger",
    "AttachmentStore",
    "SessionManager",
    "ToolAggregator"
]
