"""
Shared data models for Invoice Fetcher
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Optional


class PageState(Enum):
    """Pagination state of a search"""
    HAS_TOKEN = "has_token"
    EXHAUSTED = "exhausted"


class MessageStage(Enum):
    """Processing stage of a single message"""
    LISTING = "listing"
    DETAILING = "detailing"
    EXTRACTING_ATTACHMENTS = "extracting_attachments"
    EXTRACTING_RAW = "extracting_raw"
    EMITTING = "emitting"


@dataclass
class MessageSummary:
    """Message reference returned by a search page"""
    message_id: str
    thread_id: str = ""
    page_token: Optional[str] = None  # token of the page that listed it


@dataclass
class MessagePart:
    """Top-level body part of a message"""
    mime_type: str
    filename: str = ""
    data: Optional[str] = None  # inline base64url payload
    attachment_id: Optional[str] = None


@dataclass
class MessageDetail:
    """Message headers and structure as returned by a full get"""
    message_id: str
    internal_date: int  # epoch milliseconds
    headers: Dict[str, str] = field(default_factory=dict)
    parts: List[MessagePart] = field(default_factory=list)

    @property
    def subject(self) -> str:
        return self.headers.get('Subject', '')

    @property
    def sender(self) -> str:
        return self.headers.get('From', '')


@dataclass
class ClassificationResult:
    """Naming decision for a single message"""
    message_id: str
    date: str
    sender: str
    subject: str
    filename_prefix: str
    contract_id: Optional[str] = None
    alias: Optional[str] = None


@dataclass
class ExtractionResult:
    """Files written for a single message"""
    attachments_saved: List[str] = field(default_factory=list)
    attachments_failed: List[str] = field(default_factory=list)
    raw_saved: Optional[str] = None


@dataclass
class ScanConfig:
    """Configuration for an invoice scan"""
    search_params: Dict[str, str] = field(default_factory=lambda: {
        'from': 'faturaedp@edp.pt',
        'has': 'attachment',
    })
    user_id: str = 'me'
    provider_tag: str = 'edp'
    timezone: Optional[str] = None  # None = host local time
    max_results: Optional[int] = None


@dataclass
class ScanStats:
    """Counters reported at the end of a scan"""
    pages_fetched: int = 0
    messages_listed: int = 0
    messages_classified: int = 0
    messages_skipped: int = 0
    attachments_saved: int = 0
    attachments_failed: int = 0
    raw_saved: int = 0
    raw_failed: int = 0
