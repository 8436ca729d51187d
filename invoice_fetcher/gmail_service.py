#!/usr/bin/env python3
"""
Gmail Service - Facade for Gmail operations
Handles authentication and delegates scanning to InvoiceScanner
"""

import signal
import sys
import logging
import threading
from typing import Callable, Dict, Optional

from googleapiclient.discovery import build

from invoice_fetcher.auth_flow import SCOPES, AuthorizationFlow
from invoice_fetcher.config import DEFAULT_REDIRECT_URI
from invoice_fetcher.emitter import FileEmitter
from invoice_fetcher.models import ScanConfig, ScanStats
from invoice_fetcher.scanner import InvoiceScanner
from invoice_fetcher.token_store import TokenStore


logger = logging.getLogger(__name__)


class GmailService:
    """Facade for Gmail operations - handles auth and delegates to specialized classes"""

    def __init__(
        self,
        credentials_path: str = 'credentials.json',
        token_path: str = 'token.json',
        redirect_uri: str = DEFAULT_REDIRECT_URI
    ):
        # Auth-related
        self.credentials_path = credentials_path
        self.token_path = token_path
        self.redirect_uri = redirect_uri
        self.service = None
        self.flow = AuthorizationFlow(
            credentials_path,
            TokenStore(token_path, SCOPES),
            scopes=SCOPES,
            redirect_uri=redirect_uri
        )

        # Progress callback
        self.progress_callback: Optional[Callable] = None

        # Interrupt handling
        self.interrupted = False
        self.cancel_event = threading.Event()
        self.scanner: Optional[InvoiceScanner] = None

    def install_signal_handler(self) -> None:
        signal.signal(signal.SIGINT, self._handle_interrupt)

    def _handle_interrupt(self, signum, frame):
        """Handle Ctrl+C gracefully"""
        if not self.interrupted:
            logger.warning("Interrupt received, finishing the current message before exiting...")
            self.interrupted = True
            self.cancel_event.set()
            if self.scanner:
                self.scanner.interrupted = True
        else:
            sys.exit(1)

    def set_progress_callback(self, callback: Callable[[str, Dict], None]):
        """Set callback for progress updates"""
        self.progress_callback = callback

    # === Authentication ===

    def authenticate(self, timeout: Optional[float] = None) -> None:
        """Obtain credentials and build the Gmail client. Raises on failure."""
        creds = self.flow.run(cancel_event=self.cancel_event, timeout=timeout)
        self.service = build('gmail', 'v1', credentials=creds)

    # === Scanning (delegates to InvoiceScanner) ===

    async def scan_invoices(
        self,
        config: ScanConfig,
        aliases: Optional[Dict[str, str]] = None,
        emitter: Optional[FileEmitter] = None
    ) -> ScanStats:
        """Download invoices and raw messages for every matching email"""
        if not self.service:
            raise RuntimeError("Not authenticated. Call authenticate() first.")

        self.scanner = InvoiceScanner(self.service, config, aliases, emitter, self.progress_callback)
        self.scanner.interrupted = self.interrupted
        return await self.scanner.scan()
