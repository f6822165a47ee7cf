"""Summary: Command-line interface for ReplyDesk.

Importance: Provides a local-first entry point for connecting Gmail and working drafts.
Alternatives: Drive everything through the HTTP API.
"""

from __future__ import annotations

import argparse
import sys

from replydesk.app import AppContext, build_context, configure_logging
from replydesk.config import AppConfig
from replydesk.errors import NotFound, ReplyDeskError
from replydesk.models import AuthContext
from replydesk.oauth import build_google_auth_url, create_state_token


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Use a CLI framework like Typer or Click.
    """

    parser = argparse.ArgumentParser(description="ReplyDesk CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    user_parent = argparse.ArgumentParser(add_help=False)
    user_parent.add_argument("--email", type=str, required=True, help="Email of the acting user")

    create_user = subparsers.add_parser("create-user", help="Create a user")
    create_user.add_argument("display_name", type=str)
    create_user.add_argument("email", type=str)

    create_key = subparsers.add_parser("create-api-key", parents=[user_parent], help="Issue an API key")
    create_key.add_argument("--label", type=str, default=None)

    subparsers.add_parser("gmail-auth-url", help="Print the Google OAuth URL")

    connect = subparsers.add_parser("gmail-connect", parents=[user_parent], help="Exchange an OAuth code")
    connect.add_argument("code", type=str)

    fetch = subparsers.add_parser("fetch", parents=[user_parent], help="Fetch new emails from Gmail")
    fetch.add_argument("--max-results", type=int, default=10)

    list_messages = subparsers.add_parser("list-messages", parents=[user_parent], help="List emails")
    list_messages.add_argument("--limit", type=int, default=20)

    generate = subparsers.add_parser("generate-draft", parents=[user_parent], help="Draft a reply")
    generate.add_argument("message_id", type=int)

    list_drafts = subparsers.add_parser("list-drafts", parents=[user_parent], help="List drafts")
    list_drafts.add_argument("--limit", type=int, default=20)

    send = subparsers.add_parser("send-draft", parents=[user_parent], help="Send a draft")
    send.add_argument("draft_id", type=int)

    subparsers.add_parser("usage", parents=[user_parent], help="Show today's usage")

    serve = subparsers.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("--host", type=str, default=None)
    serve.add_argument("--port", type=int, default=None)

    return parser


def _auth_for(context: AppContext, email: str) -> AuthContext:
    user = context.users.get_user_by_email(email)
    if not user:
        raise NotFound("User", email)
    return AuthContext(user_id=user.id)


def run_cli(argv: list[str] | None = None) -> None:
    """Summary: Execute CLI commands based on arguments.

    Importance: Drives the reply workflow without the dashboard.
    Alternatives: Invoke services via an HTTP API.
    """

    parser = build_parser()
    args = parser.parse_args(argv)
    config = AppConfig.from_env()
    configure_logging(config.log_level)

    if args.command == "gmail-auth-url":
        print(build_google_auth_url(config, create_state_token()))
        return

    if args.command == "serve":
        import uvicorn

        from replydesk.api import create_app

        uvicorn.run(create_app(config), host=args.host or config.api_host, port=args.port or config.api_port)
        return

    context = build_context(config)

    if args.command == "create-user":
        user_id = context.users.create_user(args.display_name, args.email)
        print(f"User {user_id} ({args.email}).")
        return

    auth = _auth_for(context, args.email)

    if args.command == "create-api-key":
        key_id, token = context.api_keys.create_api_key(auth.user_id, args.label)
        print(f"API key {key_id}: {token}")
        return

    if args.command == "gmail-connect":
        credential = context.credentials.connect(auth.user_id, args.code)
        expiry = credential.expires_at.isoformat() if credential.expires_at else "never"
        print(f"Gmail connected, token expires {expiry}.")
        return

    if args.command == "fetch":
        result = context.ingestion.fetch_messages(auth, max_results=args.max_results)
        print(f"Ingested {result.ingested} new emails.")
        return

    if args.command == "list-messages":
        for message in context.ingestion.list_messages(auth, args.limit):
            sender = message.sender_name or message.sender_address
            print(f"{message.id}: {message.subject} ({sender})")
        return

    if args.command == "generate-draft":
        draft = context.drafts.generate_draft(auth, args.message_id)
        print(f"Draft {draft.id}: {draft.subject}\n\n{draft.plain_body}")
        return

    if args.command == "list-drafts":
        for draft in context.drafts.list_drafts(auth, args.limit):
            state = "sent" if draft.is_sent else "unsent"
            print(f"{draft.id}: {draft.subject} [{state}]")
        return

    if args.command == "send-draft":
        provider_message_id = context.drafts.send_draft(auth, args.draft_id)
        print(f"Sent draft {args.draft_id} as {provider_message_id}.")
        return

    if args.command == "usage":
        snapshot = context.usage.snapshot(auth.user_id, context.subscriptions.is_premium(auth.user_id))
        for key, value in snapshot.items():
            print(f"{key}: {value}")
        return


def main() -> None:
    try:
        run_cli()
    except ReplyDeskError as exc:
        print(f"error [{exc.code}]: {exc.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
