# contact_api/cli.py
"""
Operator commands for the contact API: schema setup, database diagnostics
and an email smoke test.
"""
from __future__ import annotations

import argparse
import asyncio
import os
import sys
from typing import Awaitable, Callable, Dict, Optional

from contact_api.core.config import settings
from contact_api.core.logging import configure_structlog
from contact_api.core.services import ServiceContainer


def _supports_color() -> bool:
    """Check if terminal supports ANSI color codes."""
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


SUPPORTS_COLOR = _supports_color()

GREEN = '\033[92m' if SUPPORTS_COLOR else ''
RED = '\033[91m' if SUPPORTS_COLOR else ''
YELLOW = '\033[93m' if SUPPORTS_COLOR else ''
BLUE = '\033[94m' if SUPPORTS_COLOR else ''
RESET = '\033[0m' if SUPPORTS_COLOR else ''


def print_success(message: str):
    print(f"{GREEN}[✓]{RESET} {message}")


def print_error(message: str):
    print(f"{RED}[✗]{RESET} {message}")


def print_warning(message: str):
    print(f"{YELLOW}[!]{RESET} {message}")


def print_info(message: str):
    print(f"{BLUE}[i]{RESET} {message}")


async def cmd_init_db(services: ServiceContainer, args: argparse.Namespace) -> int:
    """Command: create tables and optionally seed a sales representative."""
    print_info(f"Creating schema on {services.database.backend_name}...")
    await services.database.create_schema()
    print_success("Schema ready")

    if args.seed_rep:
        name, email, region = args.seed_rep
        rep_id = await services.leads.seed_sales_rep(name, email, region)
        print_success(f"Sales representative {name} <{email}> active (id={rep_id})")
    return 0


async def cmd_diagnose(services: ServiceContainer, args: argparse.Namespace) -> int:
    """Command: check connection, tables, sales team and permissions."""
    print_info("Running database diagnostics...")
    diagnostic = await services.database.diagnose()

    if not diagnostic["connection"]:
        print_error("Database connection failed")
        return 1
    print_success("Connection OK")

    if diagnostic["tables"]:
        print_success("All required tables present")
    else:
        print_error(f"Missing tables: {', '.join(diagnostic['missing_tables'])}")

    if diagnostic["sales_reps"]:
        print_success(f"{diagnostic['active_sales_reps']} active sales representative(s)")
    else:
        print_warning("No active sales representatives; leads go to the default contact")

    if diagnostic["permissions"]:
        print_success("Read permissions OK")
    else:
        print_error("Read permission check failed")

    return 0 if diagnostic["tables"] and diagnostic["permissions"] else 1


async def cmd_send_test_email(services: ServiceContainer, args: argparse.Namespace) -> int:
    """Command: send one message through the configured provider."""
    if not services.settings.email_configured:
        print_error("Email provider is not configured")
        return 1

    print_info(f"Sending test email via {services.email.provider.name} to {args.to}...")
    if await services.email.send_test_email(args.to):
        print_success("Test email accepted by provider")
        return 0
    print_error("Test email failed; see logs for the provider response")
    return 1


COMMANDS: Dict[str, Callable[[ServiceContainer, argparse.Namespace], Awaitable[int]]] = {
    'init-db': cmd_init_db,
    'diagnose': cmd_diagnose,
    'send-test-email': cmd_send_test_email,
}


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser with all commands."""
    parser = argparse.ArgumentParser(
        prog='contact-api',
        description='AllTech contact API operator commands',
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    init_parser = subparsers.add_parser('init-db', help='Create database tables')
    init_parser.add_argument(
        '--seed-rep',
        nargs=3,
        metavar=('NAME', 'EMAIL', 'REGION'),
        help='Insert or reactivate a sales representative',
    )

    subparsers.add_parser('diagnose', help='Check database connection and schema')

    email_parser = subparsers.add_parser('send-test-email', help='Send a test email')
    email_parser.add_argument('to', help='Recipient address')

    return parser


async def _run(command: str, args: argparse.Namespace) -> int:
    services = ServiceContainer.build(settings)
    try:
        return await COMMANDS[command](services, args)
    finally:
        await services.database.dispose()


def main(args: Optional[list] = None) -> int:
    """Main CLI entry point."""
    parser = create_parser()
    parsed_args = parser.parse_args(args)

    if not parsed_args.command:
        parser.print_help()
        return 1

    configure_structlog()

    try:
        return asyncio.run(_run(parsed_args.command, parsed_args))
    except KeyboardInterrupt:
        print_error("Interrupted by user")
        return 130
    except Exception as e:
        print_error(f"Error executing command: {e}")
        if os.getenv('DEBUG'):
            import traceback
            traceback.print_exc()
        return 1


if __name__ == '__main__':
    sys.exit(main())
