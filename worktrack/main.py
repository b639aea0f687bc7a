#!/usr/bin/env python3
"""
WorkTrack Notify CLI - Main Entry Point

Usage:
    worktrack login                  # Interactive email/password login
    worktrack login -t TOKEN         # Login with a token from the dashboard
    worktrack watch                  # Live notification feed (stream + polling)
    worktrack inbox                  # Show notifications
    worktrack read 42                # Mark one notification read
    worktrack read-all               # Mark every notification read
    worktrack test                   # Ask the server for a test notification
    worktrack enable-notifications   # Opt in to desktop notifications
"""

import argparse
import asyncio
import sys
from typing import Optional

from rich.console import Console
from rich.prompt import Prompt

from worktrack.auth import CredentialStore
from worktrack.config import WorkTrackConfig
from worktrack.exceptions import WorkTrackError
from worktrack.inbox import InboxView
from worktrack.logging_config import logger, setup_logging
from worktrack.permissions import PermissionFile, PermissionPrompt
from worktrack.presenter import DesktopNotifier, NullNotifier, PlatformNotifier, Toast, ToastLevel
from worktrack.session import NotificationSession


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI"""
    parser = argparse.ArgumentParser(
        prog="worktrack",
        description="WorkTrack Notify - real-time notification feed for the work tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  worktrack login                     Login to your account
  worktrack watch                     Follow notifications as they arrive
  worktrack inbox --expand            Show full notification messages
  worktrack read-all                  Clear the unread badge

How It Works:
  Notifications arrive over a server-push stream and are also polled
  periodically, so nothing is missed while the stream reconnects.
  Each notification is shown once, as a terminal toast and, if enabled,
  as a desktop notification.
        """
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    login_parser = subparsers.add_parser("login", help="Login to the work tracker")
    login_parser.add_argument("--token", "-t", help="Login with a token copied from the dashboard")
    login_parser.add_argument("--email", "-e", help="Account email")

    subparsers.add_parser("logout", help="Logout and forget the stored token")
    subparsers.add_parser("status", help="Show login and notification status")
    subparsers.add_parser("watch", help="Follow notifications in real time")

    inbox_parser = subparsers.add_parser("inbox", help="List notifications")
    inbox_parser.add_argument("--expand", action="store_true", help="Show full messages")

    read_parser = subparsers.add_parser("read", help="Mark a notification as read")
    read_parser.add_argument("id", help="Notification ID")

    subparsers.add_parser("read-all", help="Mark all notifications as read")
    subparsers.add_parser("test", help="Create a test notification")
    subparsers.add_parser("enable-notifications", help="Enable desktop notifications")

    parser.add_argument(
        "--api-url",
        type=str,
        help="Work tracker API URL (default: from config)"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to config file"
    )
    parser.add_argument(
        "--no-stream",
        action="store_true",
        help="Rely on polling only"
    )
    parser.add_argument(
        "--no-desktop",
        action="store_true",
        help="Never show desktop notifications"
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON lines"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output"
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 1.0.0"
    )

    return parser


def build_config(args: argparse.Namespace) -> WorkTrackConfig:
    config = WorkTrackConfig.load_default()
    if args.config:
        config.load_from_file(args.config)
    if args.api_url:
        config.api_base_url = args.api_url
    if args.no_stream:
        config.stream_enabled = False
    if args.no_desktop:
        config.desktop_notifications = False
    if args.json_logs:
        config.json_logs = True
    if args.verbose:
        config.log_level = "DEBUG"
    return config


def build_platform(config: WorkTrackConfig, console: Console) -> PlatformNotifier:
    if not config.desktop_notifications:
        return NullNotifier()
    return DesktopNotifier(
        config.app_name,
        config.auto_dismiss_seconds,
        PermissionFile(config.prompt_state_file),
        console=console,
    )


async def run_login(args, credentials: CredentialStore, console: Console) -> int:
    if args.token:
        success = await credentials.login_with_token(args.token)
    else:
        email = args.email or Prompt.ask("Email", console=console)
        password = Prompt.ask("Password", password=True, console=console)
        success = await credentials.login_with_credentials(email, password)

    if success:
        console.print("\n[green]✓ Login successful![/green]")
        console.print(f"Welcome, [bold]{credentials.credentials.name}[/bold]!")
        console.print("\nTry:  [cyan]worktrack watch[/cyan]")
        return 0

    console.print("\n[red]✗ Login failed[/red]")
    return 1


def show_status(config: WorkTrackConfig, credentials: CredentialStore, platform: PlatformNotifier, console: Console) -> int:
    info = credentials.get_user_info()
    if credentials.is_authenticated() and info:
        console.print(f"[green]Logged in as:[/green] {info['name']} <{info['email']}>")
    elif info:
        console.print("[yellow]Session expired. Please login again.[/yellow]")
    else:
        console.print("[dim]Not logged in[/dim]")
    console.print(f"[bold]API:[/bold] {config.api_base_url}")
    console.print(f"[bold]Desktop notifications:[/bold] {platform.permission_state.value}")
    console.print(f"[bold]Stream:[/bold] {'enabled' if config.stream_enabled else 'disabled'}")
    return 0


async def run_watch(session: NotificationSession, prompt: PermissionPrompt, console: Console) -> int:
    if prompt.should_prompt():
        await prompt.ask()

    async with session:
        InboxView(session.store, session.presenter, console).render()
        console.print("[dim]Watching for notifications. Press Ctrl+C to stop.[/dim]")
        await session.wait_closed()
    if not session.credentials.is_authenticated():
        console.print("[yellow]Logged out, stopped watching.[/yellow]")
    return 0


async def run_one_shot(args, session: NotificationSession, console: Console) -> int:
    """Commands that load the inbox once, act, and exit"""
    inbox = InboxView(session.store, session.presenter, console)
    try:
        if args.command == "test":
            await session.api.send_test_notification()
            session.presenter.toast(Toast("Test notification created!", level=ToastLevel.SUCCESS))
            return 0

        await session.store.refresh()

        if args.command == "inbox":
            inbox.render(expand=args.expand)
            return 0
        if args.command == "read":
            return 0 if await inbox.mark_one(args.id) else 1
        if args.command == "read-all":
            if session.store.unread_count == 0:
                console.print("[dim]No unread notifications[/dim]")
                return 0
            return 0 if await inbox.mark_all() else 1
    except WorkTrackError as e:
        console.print(f"[red]✗ {e.message}[/red]")
        return 1
    finally:
        await session.close()
    return 0


async def run(args: argparse.Namespace, config: WorkTrackConfig, console: Console) -> int:
    credentials = CredentialStore(config, console)

    if args.command == "login":
        return await run_login(args, credentials, console)
    if args.command == "logout":
        credentials.logout()
        console.print("[green]Logged out successfully[/green]")
        return 0

    platform = build_platform(config, console)
    if args.command == "status":
        return show_status(config, credentials, platform, console)

    if not credentials.is_authenticated():
        console.print("\n[red]✗ Authentication required[/red]")
        console.print("\nPlease login first:")
        console.print("  [cyan]worktrack login[/cyan]           Interactive login")
        console.print("  [cyan]worktrack login -t TOKEN[/cyan]  Login with a dashboard token")
        return 1

    session = NotificationSession(config, credentials, platform=platform, console=console)
    prompt = PermissionPrompt(session.presenter, platform, _permission_file(platform, config), console)

    if args.command == "enable-notifications":
        state = await prompt.request()
        await session.close()
        return 0 if state.value == "granted" else 1

    if args.command in (None, "watch"):
        return await run_watch(session, prompt, console)

    return await run_one_shot(args, session, console)


def _permission_file(platform: PlatformNotifier, config: WorkTrackConfig) -> PermissionFile:
    if isinstance(platform, DesktopNotifier):
        return platform.permission_store
    return PermissionFile(config.prompt_state_file)


def main(argv: Optional[list] = None):
    """Main entry point"""
    parser = create_parser()
    args = parser.parse_args(argv)

    config = build_config(args)
    setup_logging(config.log_level, json_logs=config.json_logs, log_file=config.log_file)
    console = Console()

    try:
        exit_code = asyncio.run(run(args, config, console))
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped.[/dim]")
        exit_code = 0
    except WorkTrackError as e:
        logger.error(e.message)
        console.print(f"\n[red]✗ {e.message}[/red]")
        exit_code = 1

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
