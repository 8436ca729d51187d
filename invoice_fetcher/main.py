#!/usr/bin/env python3
"""
Invoice Fetcher command line entry point
"""

import argparse
import asyncio
import logging
import sys
from typing import Dict, List, Optional

from rich.console import Console

from invoice_fetcher.config import Settings, load_contract_aliases, load_timezone
from invoice_fetcher.emitter import FileEmitter
from invoice_fetcher.errors import InvoiceFetcherError
from invoice_fetcher.gmail_service import GmailService
from invoice_fetcher.models import ScanConfig


logger = logging.getLogger(__name__)

console = Console()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


async def print_progress(event: str, data: Dict) -> None:
    """Print one line per classified message"""
    if event == 'message_classified':
        console.print(
            f"#{data['index']:08d} {data['message_id']} {data['date']} {data['sender']}: {data['subject']}",
            markup=False,
            highlight=False,
            soft_wrap=True
        )
    elif event == 'scan_completed':
        console.print(
            f"Saved {data['attachments_saved']} invoice(s) from {data['messages_classified']} message(s), "
            f"{data['messages_skipped']} skipped",
            markup=False,
            soft_wrap=True
        )


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Download EDP invoices from Gmail')

    parser.add_argument('--config', default=str(settings.config_path), help='contract alias YAML file')
    parser.add_argument('--credentials', default=str(settings.credentials_path), help='OAuth client secret file')
    parser.add_argument('--token', default=str(settings.token_path), help='saved credential file')
    parser.add_argument('--output-dir', default=str(settings.output_dir), help='where files are written')
    parser.add_argument('--redirect-uri', default=settings.redirect_uri, help='loopback OAuth redirect URI')
    parser.add_argument('--sender', default=settings.sender, help='sender address to search for')
    parser.add_argument('--timezone', default=settings.timezone, help='timezone for file dates (default: local)')
    parser.add_argument('--auth-timeout', type=float, default=settings.auth_timeout,
                        help='seconds to wait for browser consent (default: forever)')
    parser.add_argument('--max-results', type=int, default=None, help='page size for the search')

    return parser


def run(args: argparse.Namespace) -> None:
    aliases = load_contract_aliases(args.config)
    load_timezone(args.timezone)

    gmail_service = GmailService(args.credentials, args.token, args.redirect_uri)
    gmail_service.install_signal_handler()
    gmail_service.set_progress_callback(print_progress)
    gmail_service.authenticate(timeout=args.auth_timeout)

    config = ScanConfig(
        search_params={'from': args.sender, 'has': 'attachment'},
        timezone=args.timezone,
        max_results=args.max_results
    )
    asyncio.run(gmail_service.scan_invoices(config, aliases, FileEmitter(args.output_dir)))


def main(argv: Optional[List[str]] = None) -> int:
    try:
        settings = Settings.from_env()
        configure_logging(settings.log_level)
        args = build_parser(settings).parse_args(argv)
        run(args)
    except InvoiceFetcherError as error:
        logger.error(str(error))
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
