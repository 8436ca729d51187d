"""
Invoice Scanner - runs the search -> classify -> extract pipeline

Pagination moves HAS_TOKEN -> EXHAUSTED; each listed message then walks
DETAILING -> EXTRACTING_ATTACHMENTS -> EXTRACTING_RAW -> EMITTING.
Everything is sequential: one page, one message and one Gmail call at a time.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Awaitable, Callable, Dict, Optional

from invoice_fetcher.classifier import MessageClassifier, PrefixRegistry
from invoice_fetcher.config import load_timezone
from invoice_fetcher.emitter import FileEmitter
from invoice_fetcher.extractor import AttachmentExtractor, invoice_parts, raw_filename
from invoice_fetcher.models import (
    ClassificationResult,
    ExtractionResult,
    MessageDetail,
    MessageStage,
    MessageSummary,
    ScanConfig,
    ScanStats,
)
from invoice_fetcher.paginator import SearchPaginator, encode_query


logger = logging.getLogger(__name__)


@dataclass
class MessageContext:
    """Per-message state carried between pipeline stages"""
    summary: MessageSummary
    stage: MessageStage = MessageStage.LISTING
    detail: Optional[MessageDetail] = None
    classification: Optional[ClassificationResult] = None
    prefix: Optional[str] = None
    index: Optional[int] = None
    extraction: ExtractionResult = field(default_factory=ExtractionResult)


class InvoiceScanner:
    """Scans the mailbox for invoice emails and saves what it finds"""

    def __init__(
        self,
        service,  # Gmail API service object
        config: ScanConfig,
        aliases: Optional[Dict[str, str]] = None,
        emitter: Optional[FileEmitter] = None,
        progress_callback: Optional[Callable[[str, Dict], Awaitable[None]]] = None
    ):
        self.service = service
        self.config = config
        self.emitter = emitter or FileEmitter()
        self.progress_callback = progress_callback

        self.query = encode_query(config.search_params)
        self.paginator = SearchPaginator(service, self.query, config.user_id, config.max_results)
        self.classifier = MessageClassifier(
            service,
            aliases,
            user_id=config.user_id,
            provider_tag=config.provider_tag,
            tz=load_timezone(config.timezone)
        )
        self.extractor = AttachmentExtractor(service, self.emitter, config.user_id)
        self.prefixes = PrefixRegistry()

        self.stats = ScanStats()
        self.message_index = 0
        self.interrupted = False

        self._handlers = {
            MessageStage.DETAILING: self._detail,
            MessageStage.EXTRACTING_ATTACHMENTS: self._extract_attachments,
            MessageStage.EXTRACTING_RAW: self._extract_raw,
            MessageStage.EMITTING: self._emit,
        }

    # === Main Entry Point ===

    async def scan(self) -> ScanStats:
        """Process every matching message. A failed search page raises ScanError."""
        await self._report_progress("scan_started", {"query": self.query})
        logger.info(f"Searching for messages matching: {self.query}")

        async for summary in self.paginator.messages():
            if self.interrupted:
                logger.info("Scan interrupted, stopping before the next message")
                break

            self.stats.messages_listed += 1
            await self.process_message(summary)

        self.stats.pages_fetched = self.paginator.pages_fetched
        await self._report_progress("scan_completed", asdict(self.stats))
        logger.info(
            f"Scan complete: {self.stats.messages_classified} message(s) saved, "
            f"{self.stats.attachments_saved} invoice(s), {self.stats.messages_skipped} skipped"
        )
        return self.stats

    async def process_message(self, summary: MessageSummary) -> MessageContext:
        """Drive one message through its stages until one of them stops it"""
        context = MessageContext(summary=summary)
        stage: Optional[MessageStage] = MessageStage.DETAILING

        while stage is not None:
            context.stage = stage
            stage = await self._handlers[stage](context)

        return context

    # === Stages ===

    async def _detail(self, context: MessageContext) -> Optional[MessageStage]:
        message_id = context.summary.message_id
        detail = await self.classifier.fetch(message_id)
        if detail is None:
            self.stats.messages_skipped += 1
            await self._report_progress("message_skipped", {"message_id": message_id})
            return None

        classification = self.classifier.classify(detail)
        context.detail = detail
        context.classification = classification
        context.prefix = self.prefixes.claim(classification, [p.filename for p in invoice_parts(detail)])
        context.index = self.message_index
        self.message_index += 1
        self.stats.messages_classified += 1

        await self._report_progress("message_classified", {
            "index": context.index,
            "message_id": message_id,
            "date": classification.date,
            "sender": classification.sender,
            "subject": classification.subject,
            "contract_id": classification.contract_id,
            "prefix": context.prefix
        })
        return MessageStage.EXTRACTING_ATTACHMENTS

    async def _extract_attachments(self, context: MessageContext) -> Optional[MessageStage]:
        message_id = context.summary.message_id

        async def record(filename: str, saved: bool) -> None:
            if saved:
                self.stats.attachments_saved += 1
                await self._report_progress("attachment_saved", {"message_id": message_id, "filename": filename})
            else:
                self.stats.attachments_failed += 1
                await self._report_progress("attachment_failed", {"message_id": message_id, "filename": filename})

        await self.extractor.extract_attachments(context.detail, context.prefix, context.extraction, on_attachment=record)
        return MessageStage.EXTRACTING_RAW

    async def _extract_raw(self, context: MessageContext) -> Optional[MessageStage]:
        message_id = context.summary.message_id
        filename = raw_filename(context.prefix)

        await self.extractor.extract_raw(message_id, context.prefix, context.extraction)
        if context.extraction.raw_saved:
            self.stats.raw_saved += 1
            await self._report_progress("raw_saved", {"message_id": message_id, "filename": filename})
        else:
            self.stats.raw_failed += 1
            await self._report_progress("raw_failed", {"message_id": message_id, "filename": filename})

        return MessageStage.EMITTING

    async def _emit(self, context: MessageContext) -> Optional[MessageStage]:
        await self._report_progress("message_completed", {
            "index": context.index,
            "message_id": context.summary.message_id,
            "files": context.extraction.attachments_saved + (
                [context.extraction.raw_saved] if context.extraction.raw_saved else []
            )
        })
        return None

    # === Progress ===

    async def _report_progress(self, event: str, data: Dict) -> None:
        """Send progress update if callback is set"""
        if self.progress_callback:
            await self.progress_callback(event, data)
