"""
Authorization Flow - OAuth2 authorization-code grant over a loopback listener

The interactive path binds a short-lived callback listener, sends the user's
browser to the consent page and waits for the redirect to hand over the
authorization code through a CodeChannel.
"""

import html
import json
import queue
import threading
import time
import logging
import webbrowser
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union
from urllib.parse import urlparse

import uvicorn
from fastapi import BackgroundTasks, FastAPI
from fastapi.responses import HTMLResponse
from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow
from rich.console import Console

from invoice_fetcher.config import DEFAULT_REDIRECT_URI
from invoice_fetcher.errors import (
    AuthorizationCancelled,
    AuthorizationError,
    AuthorizationTimeout,
    ConfigurationError,
)
from invoice_fetcher.token_store import TokenStore


logger = logging.getLogger(__name__)

# If modifying these scopes, delete the file token.json.
SCOPES = ['https://www.googleapis.com/auth/gmail.readonly']

STATE_TOKEN = 'state-token'
SUCCESS_PAGE = "Authorization successful! You can close this window now."

console = Console()


def load_client_config(path: Union[str, Path]) -> Dict:
    """Read the OAuth client descriptor downloaded from the Google console"""
    path = Path(path)
    try:
        with open(path, 'r') as f:
            client_config = json.load(f)
    except OSError as error:
        raise ConfigurationError(f"Unable to read client secret file: {error}") from error
    except json.JSONDecodeError as error:
        raise ConfigurationError(f"Unable to parse client secret file to config: {error}") from error

    if not isinstance(client_config, dict) or not ({'installed', 'web'} & set(client_config)):
        raise ConfigurationError(
            f"Unable to parse client secret file to config: {path} has neither an 'installed' nor a 'web' client"
        )
    return client_config


@dataclass
class CallbackResult:
    """What the provider redirected back with"""
    code: Optional[str] = None
    error: Optional[str] = None


class CodeChannel:
    """One-shot handoff of the callback result: written once, read once"""

    def __init__(self):
        self._queue: "queue.Queue[CallbackResult]" = queue.Queue(maxsize=1)
        self._lock = threading.Lock()
        self._written = False
        self._read = False

    @property
    def delivered(self) -> bool:
        return self._written

    def offer(self, result: CallbackResult) -> bool:
        """Deliver a result; only the first delivery is accepted"""
        with self._lock:
            if self._written:
                return False
            self._written = True
        self._queue.put_nowait(result)
        return True

    def receive(
        self,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
        poll_interval: float = 0.2
    ) -> CallbackResult:
        """Block until a result arrives. Waits forever unless cancelled or timed out."""
        if self._read:
            raise RuntimeError("Authorization result already consumed")

        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise AuthorizationCancelled("Authorization was cancelled before a code was received")

            wait = poll_interval if cancel_event is not None else None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise AuthorizationTimeout(f"No authorization code received within {timeout} seconds")
                wait = remaining if wait is None else min(wait, remaining)

            try:
                result = self._queue.get(timeout=wait)
            except queue.Empty:
                continue

            self._read = True
            return result


class CallbackListener:
    """Loopback HTTP listener owning a single callback route"""

    def __init__(
        self,
        channel: CodeChannel,
        host: str = 'localhost',
        port: int = 8080,
        path: str = '/oauth2/callback',
        expected_state: str = STATE_TOKEN,
        startup_timeout: float = 10.0,
        shutdown_timeout: float = 5.0
    ):
        self.channel = channel
        self.host = host
        self.port = port
        self.path = path
        self.expected_state = expected_state
        self.startup_timeout = startup_timeout
        self.shutdown_timeout = shutdown_timeout

        self.app = self._build_app()
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def for_redirect_uri(cls, redirect_uri: str, channel: CodeChannel, **kwargs) -> "CallbackListener":
        parsed = urlparse(redirect_uri)
        return cls(
            channel,
            host=parsed.hostname or 'localhost',
            port=parsed.port or 80,
            path=parsed.path or '/',
            **kwargs
        )

    # === Routes ===

    def _build_app(self) -> FastAPI:
        app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)

        @app.get(self.path, response_class=HTMLResponse)
        def oauth_callback(
            background_tasks: BackgroundTasks,
            code: Optional[str] = None,
            state: Optional[str] = None,
            error: Optional[str] = None
        ):
            """Handle the OAuth2 redirect"""
            return self.handle_callback(background_tasks, code, state, error)

        return app

    def handle_callback(
        self,
        background_tasks: BackgroundTasks,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str]
    ) -> HTMLResponse:
        if state is not None and state != self.expected_state:
            logger.warning("Rejected authorization callback with an unexpected state value")
            return HTMLResponse("Invalid authorization state.", status_code=400)

        if error:
            if self.channel.offer(CallbackResult(error=error)):
                background_tasks.add_task(self.shutdown)
            return HTMLResponse(f"Authorization failed: {html.escape(error)}", status_code=400)

        if not code:
            logger.warning("Authorization callback carried no code")
            return HTMLResponse("Missing authorization code.", status_code=400)

        if self.channel.offer(CallbackResult(code=code)):
            logger.info("Received authorization code")
            background_tasks.add_task(self.shutdown)
        else:
            logger.warning("Ignoring duplicate authorization callback")

        return HTMLResponse(SUCCESS_PAGE)

    # === Lifecycle ===

    def start(self) -> None:
        """Serve in a background thread, returns once the socket is bound"""
        if self._thread is not None:
            raise RuntimeError("Callback listener already started")

        config = uvicorn.Config(self.app, host=self.host, port=self.port, log_level='warning', lifespan='off')
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(target=self._server.run, name='oauth-callback-listener', daemon=True)
        self._thread.start()

        deadline = time.monotonic() + self.startup_timeout
        while not self._server.started:
            if not self._thread.is_alive():
                self._thread = None
                raise AuthorizationError(
                    f"Unable to listen on {self.host}:{self.port} for the authorization callback"
                )
            if time.monotonic() > deadline:
                self.stop()
                raise AuthorizationError(f"Callback listener on {self.host}:{self.port} did not start in time")
            time.sleep(0.05)

        logger.debug(f"Listening for the authorization callback on http://{self.host}:{self.port}{self.path}")

    def shutdown(self) -> None:
        """Ask the server to exit gracefully, without waiting"""
        if self._server is not None:
            self._server.should_exit = True

    def stop(self) -> None:
        if self._thread is None:
            return

        self.shutdown()
        self._thread.join(timeout=self.shutdown_timeout)
        if self._thread.is_alive():
            logger.error(f"Callback listener on {self.host}:{self.port} did not shut down within {self.shutdown_timeout}s")
        else:
            logger.debug("Callback listener stopped")

        self._thread = None
        self._server = None

    def __enter__(self) -> "CallbackListener":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


def launch_browser(url: str) -> threading.Thread:
    """Open the default browser from a background thread, printing the URL if that fails"""
    def _open():
        try:
            opened = webbrowser.open(url)
        except webbrowser.Error as error:
            logger.warning(f"Unable to open browser automatically: {error}")
            opened = False

        if not opened:
            console.print(
                f"Please open the following URL in your browser:\n{url}",
                markup=False,
                highlight=False,
                soft_wrap=True
            )

    thread = threading.Thread(target=_open, name='browser-launcher', daemon=True)
    thread.start()
    return thread


class AuthorizationFlow:
    """Produces usable Gmail credentials, asking the user only when it has to"""

    def __init__(
        self,
        client_secrets_path: Union[str, Path],
        token_store: TokenStore,
        scopes: Optional[List[str]] = None,
        redirect_uri: str = DEFAULT_REDIRECT_URI,
        browser_launcher: Callable[[str], object] = launch_browser
    ):
        self.client_config = load_client_config(client_secrets_path)
        self.token_store = token_store
        self.scopes = scopes or SCOPES
        self.redirect_uri = redirect_uri
        self.browser_launcher = browser_launcher

    # === Main Entry Point ===

    def run(
        self,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None
    ) -> Credentials:
        """Return saved, refreshed or freshly authorized credentials"""
        creds = self.token_store.load()

        if creds is not None:
            if creds.valid:
                logger.info("Successfully authenticated with existing credentials")
                return creds
            if creds.expired and creds.refresh_token:
                if self._refresh(creds):
                    return creds
            else:
                logger.warning("Saved credentials are invalid and cannot be refreshed - re-authorizing")

        creds = self.authorize_interactively(cancel_event=cancel_event, timeout=timeout)
        self.token_store.save(creds)
        return creds

    # === Refresh ===

    def _refresh(self, creds: Credentials) -> bool:
        logger.info("Refreshing expired credentials")
        try:
            creds.refresh(Request())
        except (RefreshError, TransportError) as error:
            logger.warning(f"Unable to refresh saved credentials, re-authorizing: {error}")
            return False

        self.token_store.save(creds)
        return True

    # === Interactive Grant ===

    def create_flow(self) -> Flow:
        return Flow.from_client_config(self.client_config, scopes=self.scopes, redirect_uri=self.redirect_uri)

    @staticmethod
    def authorization_url(flow: Flow) -> str:
        auth_url, _ = flow.authorization_url(
            access_type='offline',
            prompt='consent',
            state=STATE_TOKEN
        )
        return auth_url

    def authorize_interactively(
        self,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None
    ) -> Credentials:
        flow = self.create_flow()
        auth_url = self.authorization_url(flow)
        channel = CodeChannel()

        with CallbackListener.for_redirect_uri(self.redirect_uri, channel):
            logger.info(f"Opening browser for authorization at {auth_url}...")
            self.browser_launcher(auth_url)
            result = channel.receive(cancel_event=cancel_event, timeout=timeout)

        if result.error:
            raise AuthorizationError(f"Authorization was not granted: {result.error}")

        return self.exchange_code(flow, result.code)

    def exchange_code(self, flow: Flow, code: str) -> Credentials:
        """Trade the authorization code for credentials at the token endpoint"""
        try:
            flow.fetch_token(code=code)
        except Exception as error:
            raise AuthorizationError(f"Unable to retrieve token from web: {error}") from error

        logger.info("Successfully authenticated with Gmail via OAuth")
        return flow.credentials
