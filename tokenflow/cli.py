"""Command-line interface for tokenflow.

The ``login`` and ``complete`` commands split an implicit-grant flow
across two invocations, so they need the ``file`` or ``redis`` storage
backend for the pending request to survive in between.
"""

from __future__ import annotations

import argparse
import sys
import time

from typing import TYPE_CHECKING

from .exceptions import TokenFlowError
from .log import mask_token


if TYPE_CHECKING:
    from .flow import AuthFlowController


def _controller() -> AuthFlowController:
    """Return the shared controller (built from settings)."""
    from .flow import get_controller

    return get_controller()


def main() -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="tokenflow",
        description="OAuth2 implicit-grant token management",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("config", help="Show current configuration")

    login_parser = subparsers.add_parser(
        "login",
        help="Open the provider's authorization page in a browser",
    )
    login_parser.add_argument("provider", help="Provider id")
    login_parser.add_argument(
        "--scope",
        "-s",
        action="append",
        default=None,
        help="Scope to request (repeatable; default: provider default)",
    )

    complete_parser = subparsers.add_parser(
        "complete",
        help="Store the token from a redirect URL",
    )
    complete_parser.add_argument("location", help="The full redirect URL, fragment included")
    complete_parser.add_argument(
        "--provider",
        "-p",
        default=None,
        help="Provider to attribute a redirect without state to",
    )

    tokens_parser = subparsers.add_parser("tokens", help="List stored tokens")
    tokens_parser.add_argument("--provider", "-p", default=None, help="Only this provider")

    wipe_parser = subparsers.add_parser("wipe", help="Delete stored tokens")
    wipe_parser.add_argument("--provider", "-p", default=None, help="Only this provider")

    subparsers.add_parser("pending", help="List authorization requests awaiting a redirect")

    args = parser.parse_args()

    handlers = {
        "config": handle_config,
        "login": handle_login,
        "complete": handle_complete,
        "tokens": handle_tokens,
        "wipe": handle_wipe,
        "pending": handle_pending,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 0

    try:
        return handler(args)
    except TokenFlowError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def handle_config(args: argparse.Namespace) -> int:  # pylint: disable=unused-argument
    """Handle the config command."""
    from .config import get_settings

    print(get_settings().show())
    return 0


def handle_login(args: argparse.Namespace) -> int:
    """Handle the login command."""
    controller = _controller()
    state = controller.initiate(args.provider, args.scope)
    print(f"Authorization request sent to {args.provider} (state {state}).")
    url = getattr(controller.gateway, "last_navigation", None)
    if url:
        print(f"If no browser opened, visit:\n  {url}")
    return 0


def handle_complete(args: argparse.Namespace) -> int:
    """Handle the complete command."""
    controller = _controller()
    token = controller.complete_from_redirect(args.location, fallback_provider_id=args.provider)
    if token is None:
        print("No access token found in the given location.", file=sys.stderr)
        return 1
    scopes = " ".join(token.scopes) if token.scopes is not None else "(unscoped)"
    print(f"Stored token {mask_token(token.access_token)} with scopes {scopes}.")
    return 0


def format_tokens(dump: dict[str, dict[str, object]], provider_id: str | None = None) -> str:
    """Format a controller dump as a readable listing.

    Access tokens are masked.
    """
    lines: list[str] = []
    for pid, entry in dump.items():
        if provider_id is not None and pid != provider_id:
            continue
        lines.append(f"[{pid}]")
        tokens = entry["tokens"]
        if not tokens:
            lines.append("  (no tokens)")
        for token in tokens:  # type: ignore[attr-defined]
            scopes = " ".join(token["scopes"]) if token["scopes"] is not None else "*"
            if token["expires_at"] is None:
                expiry = "never"
            else:
                expiry = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(token["expires_at"]))
            status = "expired" if token["expired"] else "valid"
            lines.append(
                f"  {mask_token(token['access_token']):12} {status:8} expires={expiry} scopes={scopes}"
            )
    return "\n".join(lines) if lines else "(no providers configured)"


def handle_tokens(args: argparse.Namespace) -> int:
    """Handle the tokens command."""
    controller = _controller()
    if args.provider is not None:
        controller.registry.get(args.provider)
    print(format_tokens(controller.dump(), args.provider))
    return 0


def handle_wipe(args: argparse.Namespace) -> int:
    """Handle the wipe command."""
    controller = _controller()
    if args.provider is not None:
        controller.registry.get(args.provider)
    removed = controller.wipe(args.provider)
    print(f"Removed {removed} token(s).")
    return 0


def handle_pending(args: argparse.Namespace) -> int:  # pylint: disable=unused-argument
    """Handle the pending command."""
    states = _controller().pending.enumerate()
    if not states:
        print("No pending authorization requests.")
        return 0
    for state in states:
        print(state)
    return 0


if __name__ == "__main__":
    sys.exit(main())
