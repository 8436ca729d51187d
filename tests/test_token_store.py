"""
Tests for TokenStore
"""

import stat
from datetime import datetime, timedelta, timezone

from google.oauth2.credentials import Credentials

from invoice_fetcher.token_store import TokenStore


def make_credentials(token: str = 'access') -> Credentials:
    return Credentials(
        token=token,
        refresh_token='refresh',
        token_uri='https://oauth2.googleapis.com/token',
        client_id='client-id',
        client_secret='client-secret',
        scopes=['https://www.googleapis.com/auth/gmail.readonly']
    )


class TestTokenStore:
    """Tests for load / save"""

    def test_missing_file(self, tmp_path):
        store = TokenStore(tmp_path / 'token.json')

        assert store.exists() is False
        assert store.load() is None

    def test_round_trip(self, tmp_path):
        store = TokenStore(tmp_path / 'token.json')
        store.save(make_credentials())

        creds = store.load()
        assert creds.token == 'access'
        assert creds.refresh_token == 'refresh'
        assert creds.client_id == 'client-id'

    def test_owner_only_permissions(self, tmp_path):
        store = TokenStore(tmp_path / 'token.json')
        store.save(make_credentials())

        assert stat.S_IMODE(store.path.stat().st_mode) == 0o600

    def test_save_truncates(self, tmp_path):
        store = TokenStore(tmp_path / 'token.json')
        store.save(make_credentials('a-rather-long-first-access-token-value'))
        store.save(make_credentials('short'))

        assert store.load().token == 'short'

    def test_creates_parent_directory(self, tmp_path):
        store = TokenStore(tmp_path / 'data' / 'token.json')
        store.save(make_credentials())

        assert store.exists()

    def test_corrupt_file_is_ignored(self, tmp_path):
        path = tmp_path / 'token.json'
        path.write_text('{not json')

        assert TokenStore(path).load() is None

    def test_incomplete_file_is_ignored(self, tmp_path):
        path = tmp_path / 'token.json'
        path.write_text('{"client_id": "client-id"}')

        assert TokenStore(path).load() is None

    def test_access_token_without_refresh_token(self, tmp_path):
        """A re-consent without a refresh token still saves a loadable credential"""
        expiry = datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0) + timedelta(hours=1)
        store = TokenStore(tmp_path / 'token.json')
        store.save(Credentials(
            token='access',
            token_uri='https://oauth2.googleapis.com/token',
            client_id='client-id',
            client_secret='client-secret',
            expiry=expiry
        ))

        creds = store.load()
        assert creds.token == 'access'
        assert creds.refresh_token is None
        assert creds.expiry == expiry
        assert creds.valid is True

    def test_expired_access_token_without_refresh_token(self, tmp_path):
        store = TokenStore(tmp_path / 'token.json')
        store.save(Credentials(token='access', expiry=datetime(2020, 1, 1)))

        creds = store.load()
        assert creds.expired is True
        assert creds.refresh_token is None
