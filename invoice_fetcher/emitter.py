"""
File Emitter - writes decoded payloads under computed filenames
"""

import re
import base64
import binascii
import logging
from pathlib import Path
from typing import Union


logger = logging.getLogger(__name__)

BASE64URL_PATTERN = re.compile(rb'[A-Za-z0-9_-]*={0,2}')


def decode_base64url(data: str) -> bytes:
    """Decode Gmail's base64url payloads, tolerating stripped padding"""
    if isinstance(data, str):
        data = data.encode('ascii')
    data = data.strip()
    if not BASE64URL_PATTERN.fullmatch(data):
        raise binascii.Error("Payload contains characters outside the base64url alphabet")
    return base64.b64decode(data + b'=' * (-len(data) % 4), altchars=b'-_', validate=True)


class FileEmitter:
    """Writes files into a single output directory"""

    def __init__(self, output_dir: Union[str, Path] = '.'):
        self.output_dir = Path(output_dir)

    def path_for(self, filename: str) -> Path:
        return self.output_dir / filename

    def write(self, filename: str, payload: bytes) -> Path:
        """Truncate-and-write payload, returns the written path"""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.path_for(filename)
        path.write_bytes(payload)
        path.chmod(0o644)
        logger.debug(f"Wrote {len(payload)} bytes to {path}")
        return path
