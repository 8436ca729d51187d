"""
Search Paginator - walks Gmail search results page by page
"""

import asyncio
import logging
from typing import AsyncIterator, Dict, List, Mapping, Optional, Tuple

from googleapiclient.errors import HttpError

from invoice_fetcher.errors import ScanError
from invoice_fetcher.models import MessageSummary, PageState


logger = logging.getLogger(__name__)


# Values holding any of these are written as field:"value"
QUOTED_CHARACTERS = ' :"\\'


def encode_query(params: Mapping[str, str]) -> str:
    """Encode a mapping into Gmail search syntax, e.g. from:x has:attachment

    see https://support.google.com/mail/answer/7190
    """
    queries = []
    for key, value in params.items():
        if any(c in value for c in QUOTED_CHARACTERS):
            escaped = value.replace('\\', '\\\\').replace('"', '\\"')
            queries.append(f'{key}:"{escaped}"')
        else:
            queries.append(f'{key}:{value}')
    return ' '.join(queries)


def split_terms(query: str) -> List[str]:
    """Split on unquoted spaces, removing the quoting encode_query adds"""
    terms = []
    current = []
    in_term = False
    quoted = False

    chars = iter(query)
    for char in chars:
        if quoted:
            if char == '\\':
                char = next(chars, None)
                if char is None:
                    raise ValueError("Query ends inside an escape")
                current.append(char)
            elif char == '"':
                quoted = False
            else:
                current.append(char)
        elif char == '"':
            quoted = in_term = True
        elif char == ' ':
            if in_term:
                terms.append(''.join(current))
                current = []
                in_term = False
        else:
            current.append(char)
            in_term = True

    if quoted:
        raise ValueError("No closing quotation")
    if in_term:
        terms.append(''.join(current))
    return terms


def parse_query(query: str) -> Dict[str, str]:
    """Split a query built by encode_query back into its fields"""
    params = {}
    for token in split_terms(query):
        key, sep, value = token.partition(':')
        if not sep:
            raise ValueError(f"Not a field:value term: {token!r}")
        params[key] = value
    return params


class SearchPaginator:
    """Lazily yields the messages matching a query, one page at a time"""

    def __init__(
        self,
        service,  # Gmail API service object
        query: str,
        user_id: str = 'me',
        max_results: Optional[int] = None
    ):
        self.service = service
        self.query = query
        self.user_id = user_id
        self.max_results = max_results
        self.state = PageState.HAS_TOKEN
        self.pages_fetched = 0

    async def messages(self) -> AsyncIterator[MessageSummary]:
        """Yield every matching message; a failed page raises ScanError"""
        if self.state is PageState.EXHAUSTED:
            raise RuntimeError("Search results were already consumed")

        page_token = None

        while self.state is PageState.HAS_TOKEN:
            messages, next_page_token = await self._fetch_page(page_token)

            if not messages:
                self.state = PageState.EXHAUSTED
                break

            for message in messages:
                yield MessageSummary(
                    message_id=message['id'],
                    thread_id=message.get('threadId', ''),
                    page_token=page_token
                )

            page_token = next_page_token
            if not page_token:
                self.state = PageState.EXHAUSTED

        logger.debug(f"Search exhausted after {self.pages_fetched} page(s)")

    async def _fetch_page(self, page_token: Optional[str]) -> Tuple[List[Dict], Optional[str]]:
        """Fetch a page of messages, returns (messages, next_page_token)"""
        kwargs = {'userId': self.user_id, 'q': self.query}
        if page_token:
            kwargs['pageToken'] = page_token
        if self.max_results:
            kwargs['maxResults'] = self.max_results

        try:
            results = await asyncio.to_thread(
                lambda: self.service.users().messages().list(**kwargs).execute()
            )
        except HttpError as error:
            raise ScanError(f"Unable to retrieve messages: {error}") from error

        self.pages_fetched += 1
        messages = results.get('messages', [])
        logger.debug(f"Page {self.pages_fetched}: {len(messages)} message(s)")

        return messages, results.get('nextPageToken') or None
