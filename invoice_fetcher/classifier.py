"""
Message Classifier - fetches a message and decides its output filenames
"""

import re
import asyncio
import logging
from datetime import datetime, tzinfo
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from googleapiclient.errors import HttpError

from invoice_fetcher.models import ClassificationResult, MessageDetail, MessagePart


logger = logging.getLogger(__name__)

# e.g. A sua fatura EDP (contrato 100200300200)
CONTRACT_SUBJECT_PATTERN = re.compile(r'\(contrato ([0-9]+)\)')


def format_date(internal_date_ms: int, tz: Optional[tzinfo] = None) -> str:
    """Format an epoch-milliseconds timestamp as YYYY-MM-DD (host local time unless tz is given)"""
    seconds = int(internal_date_ms) // 1000
    return datetime.fromtimestamp(seconds, tz).strftime('%Y-%m-%d')


def extract_contract(subject: str) -> Optional[str]:
    match = CONTRACT_SUBJECT_PATTERN.search(subject or '')
    if match:
        return match.group(1)
    return None


def parse_message_detail(data: Dict) -> MessageDetail:
    """Build a MessageDetail from a users.messages.get(format='full') response"""
    payload = data.get('payload') or {}

    headers = {}
    for header in payload.get('headers', []):
        headers[header.get('name', '')] = header.get('value', '')

    parts = []
    for part in payload.get('parts', []):
        body = part.get('body') or {}
        parts.append(MessagePart(
            mime_type=part.get('mimeType', ''),
            filename=part.get('filename', ''),
            data=body.get('data'),
            attachment_id=body.get('attachmentId')
        ))

    return MessageDetail(
        message_id=data['id'],
        internal_date=int(data.get('internalDate', 0)),
        headers=headers,
        parts=parts
    )


class MessageClassifier:
    """Fetches message details and computes filename prefixes"""

    def __init__(
        self,
        service,  # Gmail API service object
        aliases: Optional[Dict[str, str]] = None,
        user_id: str = 'me',
        provider_tag: str = 'edp',
        tz: Optional[tzinfo] = None
    ):
        self.service = service
        self.aliases = aliases or {}
        self.user_id = user_id
        self.provider_tag = provider_tag
        self.tz = tz

    async def fetch(self, message_id: str) -> Optional[MessageDetail]:
        """Fetch headers and structure; None if the message can't be retrieved"""
        try:
            data = await asyncio.to_thread(
                lambda: self.service.users().messages().get(
                    userId=self.user_id,
                    id=message_id,
                    format='full'
                ).execute()
            )
        except HttpError as error:
            logger.error(f"Unable to retrieve message {message_id}: {error}")
            return None

        try:
            return parse_message_detail(data)
        except (KeyError, TypeError, ValueError) as error:
            logger.error(f"Unable to parse message {message_id}: {error}")
            return None

    def classify(self, detail: MessageDetail) -> ClassificationResult:
        date = format_date(detail.internal_date, self.tz)
        subject = detail.subject
        contract = extract_contract(subject)
        alias = None

        if contract:
            prefix = f"{date}-{self.provider_tag}-{contract}"
            alias = self.aliases.get(contract)
            if alias:
                prefix = f"{prefix}-{alias}"
        else:
            prefix = f"{date}-{detail.message_id}"

        return ClassificationResult(
            message_id=detail.message_id,
            date=date,
            sender=detail.sender,
            subject=subject,
            filename_prefix=prefix,
            contract_id=contract,
            alias=alias
        )


class PrefixRegistry:
    """Keeps contract-based prefixes from colliding within one run"""

    def __init__(self):
        self._claims: Dict[str, Tuple[str, FrozenSet[str]]] = {}

    def claim(self, result: ClassificationResult, invoice_filenames: Iterable[str]) -> str:
        """Return the prefix to use for this message"""
        prefix = result.filename_prefix
        filenames = frozenset(invoice_filenames)
        claimed = self._claims.get(prefix)

        if claimed is None:
            self._claims[prefix] = (result.message_id, filenames)
            return prefix

        owner, owner_filenames = claimed
        if owner == result.message_id or (filenames and owner_filenames == filenames):
            # same message, or a re-sent copy of the same invoice
            return prefix

        unique = f"{prefix}-{result.message_id}"
        logger.warning(f"Prefix {prefix} already used by message {owner}; using {unique} for {result.message_id}")
        self._claims[unique] = (result.message_id, filenames)
        return unique
