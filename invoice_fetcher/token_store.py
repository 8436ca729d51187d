"""
Token Store - persists the OAuth credential between runs
"""

import os
import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Union

from google.oauth2.credentials import Credentials


logger = logging.getLogger(__name__)


def _parse_expiry(value: Optional[str]) -> Optional[datetime]:
    # Credentials.to_json writes naive UTC as 2024-07-08T00:53:20.123456Z
    if not value:
        return None
    return datetime.strptime(value.rstrip('Z').split('.')[0], '%Y-%m-%dT%H:%M:%S')


class TokenStore:
    """Loads and saves authorized-user credentials as JSON"""

    def __init__(self, path: Union[str, Path] = 'token.json', scopes: Optional[List[str]] = None):
        self.path = Path(path)
        self.scopes = scopes

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[Credentials]:
        """Return saved credentials, or None if there are none usable"""
        if not self.exists():
            logger.info(f"No existing token found at {self.path}")
            return None

        try:
            with open(self.path, 'r') as token:
                info = json.load(token)
            return self._from_info(info)
        except (OSError, ValueError) as error:
            logger.warning(f"Ignoring unreadable token file {self.path}: {error}")
            return None

    def _from_info(self, info: Dict) -> Credentials:
        if not isinstance(info, dict):
            raise ValueError("token file does not hold a JSON object")

        if info.get('refresh_token'):
            return Credentials.from_authorized_user_info(info, self.scopes)

        # Access token only: usable until it expires, then re-authorized
        if not info.get('token'):
            raise ValueError("token file holds neither an access token nor a refresh token")
        return Credentials(
            token=info['token'],
            token_uri=info.get('token_uri'),
            client_id=info.get('client_id'),
            client_secret=info.get('client_secret'),
            scopes=self.scopes or info.get('scopes'),
            expiry=_parse_expiry(info.get('expiry'))
        )

    def save(self, creds: Credentials) -> None:
        """Overwrite the token file, readable by the owner only"""
        logger.info(f"Saving credential file to: {self.path}")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, 'w') as token:
            token.write(creds.to_json())
