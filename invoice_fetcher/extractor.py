"""
Attachment Extractor - saves invoice PDFs and the raw message
"""

import re
import asyncio
import binascii
import logging
from typing import Awaitable, Callable, List, Optional

from googleapiclient.errors import HttpError

from invoice_fetcher.emitter import FileEmitter, decode_base64url
from invoice_fetcher.models import ExtractionResult, MessageDetail, MessagePart


logger = logging.getLogger(__name__)

PDF_MIME_TYPE = 'application/pdf'

# e.g. 187008571923.pdf
INVOICE_FILENAME_PATTERN = re.compile(r'[0-9]+\.pdf')

# Called with (filename, saved) after each invoice part
AttachmentCallback = Callable[[str, bool], Awaitable[None]]


def is_invoice_part(part: MessagePart) -> bool:
    return part.mime_type == PDF_MIME_TYPE and INVOICE_FILENAME_PATTERN.fullmatch(part.filename or '') is not None


def invoice_parts(detail: MessageDetail) -> List[MessagePart]:
    """Top-level parts that look like an invoice PDF"""
    return [part for part in detail.parts if is_invoice_part(part)]


def attachment_filename(prefix: str, part: MessagePart) -> str:
    return f"{prefix}-{part.filename}"


def raw_filename(prefix: str) -> str:
    return f"{prefix}.eml"


class AttachmentExtractor:
    """Writes {prefix}-{filename} for each invoice part and {prefix}.eml for the message"""

    def __init__(
        self,
        service,  # Gmail API service object
        emitter: FileEmitter,
        user_id: str = 'me'
    ):
        self.service = service
        self.emitter = emitter
        self.user_id = user_id

    async def extract(
        self,
        detail: MessageDetail,
        prefix: str,
        on_attachment: Optional[AttachmentCallback] = None
    ) -> ExtractionResult:
        """Save every invoice part, then the raw message"""
        result = ExtractionResult()
        await self.extract_attachments(detail, prefix, result, on_attachment)
        await self.extract_raw(detail.message_id, prefix, result)
        return result

    async def extract_attachments(
        self,
        detail: MessageDetail,
        prefix: str,
        result: ExtractionResult,
        on_attachment: Optional[AttachmentCallback] = None
    ) -> ExtractionResult:
        """Save each invoice part; a failed part is recorded and the rest continue"""
        for part in invoice_parts(detail):
            filename = attachment_filename(prefix, part)
            saved = await self.save_attachment(detail.message_id, part, filename)
            if saved:
                result.attachments_saved.append(filename)
            else:
                result.attachments_failed.append(filename)

            if on_attachment:
                await on_attachment(filename, saved)

        return result

    async def extract_raw(self, message_id: str, prefix: str, result: ExtractionResult) -> ExtractionResult:
        result.raw_saved = await self.save_raw_message(message_id, raw_filename(prefix))
        return result

    # === Attachments ===

    async def save_attachment(self, message_id: str, part: MessagePart, filename: str) -> bool:
        """Fetch, decode and write one attachment, returns success"""
        data = part.data
        if not data:
            if not part.attachment_id:
                logger.error(f"Message {message_id} part {part.filename} has neither data nor an attachment id")
                return False
            data = await self._fetch_attachment(message_id, part.attachment_id)
            if data is None:
                return False

        try:
            payload = decode_base64url(data)
        except (binascii.Error, ValueError) as error:
            logger.error(f"Unable to decode message {message_id} attachment {part.filename}: {error}")
            return False

        try:
            self.emitter.write(filename, payload)
        except OSError as error:
            logger.error(f"Unable to save message {message_id} attachment {part.filename}: {error}")
            return False

        logger.info(f"Saved {filename}")
        return True

    async def _fetch_attachment(self, message_id: str, attachment_id: str) -> Optional[str]:
        try:
            body = await asyncio.to_thread(
                lambda: self.service.users().messages().attachments().get(
                    userId=self.user_id,
                    messageId=message_id,
                    id=attachment_id
                ).execute()
            )
        except HttpError as error:
            logger.error(f"Unable to retrieve message {message_id} attachment {attachment_id}: {error}")
            return None

        data = body.get('data')
        if not data:
            logger.error(f"Message {message_id} attachment {attachment_id} came back empty")
            return None
        return data

    # === Raw Message ===

    async def save_raw_message(self, message_id: str, filename: str) -> Optional[str]:
        """Fetch the RFC-822 form and write it; returns the filename or None"""
        try:
            raw_message = await asyncio.to_thread(
                lambda: self.service.users().messages().get(
                    userId=self.user_id,
                    id=message_id,
                    format='raw'
                ).execute()
            )
        except HttpError as error:
            logger.error(f"Unable to retrieve raw message {message_id}: {error}")
            return None

        raw = raw_message.get('raw')
        if not raw:
            logger.error(f"Raw message {message_id} came back empty")
            return None

        try:
            content = decode_base64url(raw)
        except (binascii.Error, ValueError) as error:
            logger.error(f"Unable to decode raw message {message_id}: {error}")
            return None

        try:
            self.emitter.write(filename, content)
        except OSError as error:
            logger.error(f"Error saving message {message_id}: {error}")
            return None

        return filename
