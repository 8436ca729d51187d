"""
Shared test fixtures for Invoice Fetcher tests
"""

import base64
import pytest
from typing import Dict, List, Optional
from googleapiclient.errors import HttpError

from invoice_fetcher.emitter import FileEmitter
from invoice_fetcher.models import ScanConfig


FIXED_DATE_MS = 1720400000000  # 2024-07-08 00:53:20 UTC
FIXED_DATE = '2024-07-08'

PDF_BYTES = b'%PDF-1.4 fake invoice'


def encode(data: bytes) -> str:
    """base64url-encode the way Gmail does"""
    return base64.urlsafe_b64encode(data).decode('ascii')


# === Mock Gmail API Service ===

class MockExecute:
    """Mock for the .execute() call that returns stored data"""
    def __init__(self, data):
        self._data = data

    def execute(self):
        return self._data


class MockHttpResponse:
    """Mock HTTP response for HttpError"""
    def __init__(self, status: int, reason: str):
        self.status = status
        self.reason = reason


class MockFailure:
    """Mock for a request whose .execute() raises HttpError"""
    def __init__(self, status: int = 500, reason: str = 'Backend Error'):
        self._status = status
        self._reason = reason

    def execute(self):
        raise HttpError(resp=MockHttpResponse(self._status, self._reason), content=b'request failed')


class MockAttachments:
    """Mock for users().messages().attachments()"""
    def __init__(self, mailbox: dict, calls: List[tuple]):
        self._mailbox = mailbox
        self._calls = calls

    def get(self, userId: str, messageId: str, id: str):
        self._calls.append(('attachments.get', messageId, id))
        if id in self._mailbox.get('fail_attachments', set()):
            return MockFailure(404, 'Not Found')
        data = self._mailbox.get('attachments', {}).get(id)
        if data is None:
            return MockFailure(404, 'Not Found')
        return MockExecute({'attachmentId': id, 'size': len(data), 'data': data})


class MockMessages:
    """Mock for users().messages()"""
    def __init__(self, mailbox: dict, calls: List[tuple]):
        self._mailbox = mailbox
        self._calls = calls
        self._attachments = MockAttachments(mailbox, calls)

    def list(self, userId: str, q: str = None, pageToken: Optional[str] = None, maxResults: Optional[int] = None):
        self._calls.append(('list', q, pageToken))
        pages = self._mailbox.get('pages', [])

        if pageToken in self._mailbox.get('fail_page_tokens', set()):
            return MockFailure()

        if pageToken is None:
            index = 0
        else:
            index = next(
                (i + 1 for i, page in enumerate(pages) if page.get('nextPageToken') == pageToken),
                len(pages)
            )

        if index >= len(pages):
            return MockExecute({'resultSizeEstimate': 0})

        page = pages[index]
        result = {
            'messages': [{'id': m, 'threadId': f'thread_{m}'} for m in page.get('messages', [])],
            'resultSizeEstimate': len(page.get('messages', []))
        }
        if 'nextPageToken' in page:
            result['nextPageToken'] = page['nextPageToken']
        if not result['messages']:
            del result['messages']
        return MockExecute(result)

    def get(self, userId: str, id: str, format: str = 'full'):
        self._calls.append(('get', id, format))
        if format == 'raw':
            if id in self._mailbox.get('fail_raw', set()):
                return MockFailure(404, 'Not Found')
            raw = self._mailbox.get('raw', {}).get(id)
            if raw is None:
                return MockFailure(404, 'Not Found')
            return MockExecute({'id': id, 'raw': raw})

        if id in self._mailbox.get('fail_get', set()):
            return MockFailure(404, 'Not Found')
        message = self._mailbox.get('messages', {}).get(id)
        if message is None:
            return MockFailure(404, 'Not Found')
        return MockExecute(message)

    def attachments(self):
        return self._attachments


class MockUsers:
    """Mock for service.users()"""
    def __init__(self, mailbox: dict, calls: List[tuple]):
        self._messages = MockMessages(mailbox, calls)

    def messages(self):
        return self._messages


class MockGmailService:
    """Mock Gmail API service that simulates a read-only mailbox"""

    def __init__(self, mailbox: dict):
        self._mailbox = mailbox
        self.calls: List[tuple] = []
        self._users = MockUsers(mailbox, self.calls)

    def users(self):
        return self._users

    def calls_named(self, name: str) -> List[tuple]:
        return [call for call in self.calls if call[0] == name]


# === Helpers to create message data ===

def make_part(filename: str, mime_type: str = 'application/pdf', attachment_id: str = None, data: str = None) -> dict:
    """Helper to create a top-level part matching Gmail API structure"""
    body = {'size': 0}
    if attachment_id:
        body['attachmentId'] = attachment_id
    if data is not None:
        body['data'] = data
    return {'partId': '1', 'mimeType': mime_type, 'filename': filename, 'body': body}


def make_message(
    message_id: str,
    subject: Optional[str],
    sender: Optional[str] = 'EDP <faturaedp@edp.pt>',
    internal_date: int = FIXED_DATE_MS,
    parts: List[dict] = None
) -> dict:
    """Helper to create a format=full message"""
    headers = []
    if sender is not None:
        headers.append({'name': 'From', 'value': sender})
    if subject is not None:
        headers.append({'name': 'Subject', 'value': subject})

    return {
        'id': message_id,
        'threadId': f'thread_{message_id}',
        'internalDate': str(internal_date),
        'payload': {
            'mimeType': 'multipart/mixed',
            'headers': headers,
            'parts': parts or [make_part('', mime_type='text/plain', data=encode(b'hello'))]
        }
    }


def make_raw(message_id: str, subject: str = 'invoice') -> str:
    return encode(f'Message-ID: <{message_id}@edp.pt>\r\nSubject: {subject}\r\n\r\nbody\r\n'.encode('utf-8'))


# === Fixtures ===

@pytest.fixture
def sample_mailbox() -> dict:
    """Three pages (2, 2, 0 messages) covering the interesting message shapes"""
    messages = {
        # Contract with an alias, attachment fetched by id
        'msg_001': make_message('msg_001', 'A sua fatura EDP (contrato 100200300200)', parts=[
            make_part('', mime_type='text/html', data=encode(b'<p>fatura</p>')),
            make_part('187008571923.pdf', attachment_id='att_001'),
        ]),
        # Contract without an alias, inline attachment plus non-matching parts
        'msg_002': make_message('msg_002', 'A sua fatura EDP (contrato 999888777)', parts=[
            make_part('200000000001.pdf', data=encode(PDF_BYTES)),
            make_part('invoice-200000000001.pdf', attachment_id='att_002b'),
            make_part('200000000001.txt', mime_type='text/plain', attachment_id='att_002c'),
        ]),
        # Detail fetch fails
        'msg_003': make_message('msg_003', 'A sua fatura EDP (contrato 555)'),
        # No contract, attachment fetch fails
        'msg_004': make_message('msg_004', 'Novidades EDP', parts=[
            make_part('123.pdf', attachment_id='att_004'),
        ]),
    }

    return {
        'pages': [
            {'messages': ['msg_001', 'msg_002'], 'nextPageToken': 'A'},
            {'messages': ['msg_003', 'msg_004'], 'nextPageToken': 'B'},
            {'messages': [], 'nextPageToken': ''},
        ],
        'messages': messages,
        'raw': {message_id: make_raw(message_id) for message_id in messages},
        'attachments': {
            'att_001': encode(PDF_BYTES),
            'att_002b': encode(b'not an invoice'),
            'att_002c': encode(b'text'),
        },
        'fail_get': {'msg_003'},
        'fail_attachments': {'att_004'},
    }


@pytest.fixture
def mock_gmail_service(sample_mailbox) -> MockGmailService:
    """Returns a MockGmailService with the sample mailbox"""
    return MockGmailService(sample_mailbox)


@pytest.fixture
def empty_mailbox() -> dict:
    """A search that matches nothing"""
    return {'pages': [{'messages': []}], 'messages': {}}


@pytest.fixture
def mock_gmail_service_empty(empty_mailbox) -> MockGmailService:
    return MockGmailService(empty_mailbox)


@pytest.fixture
def aliases() -> Dict[str, str]:
    return {'100200300200': 'mafra'}


@pytest.fixture
def emitter(tmp_path) -> FileEmitter:
    return FileEmitter(tmp_path)


@pytest.fixture
def utc_scan_config() -> ScanConfig:
    """Default ScanConfig pinned to UTC so dates are reproducible"""
    return ScanConfig(timezone='UTC')
