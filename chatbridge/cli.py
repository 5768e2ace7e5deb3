#!/usr/bin/env python3
"""
Command-line access to the chatbridge SDK.

Usage:
    # Create or upgrade the chat store
    chatbridge migrate --db chat_history.db

    # List the models the provider serves
    chatbridge models

    # One-shot completion, optionally streamed
    chatbridge chat "Say hi" --stream

The provider location and key come from ``CHATBRIDGE_BASE_URL`` and
``CHATBRIDGE_API_KEY``.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

import requests

from . import config
from .chat_history import ChatHistory
from .client import LLMClient
from .errors import ChatbridgeError
from .models import ChatRequest, RequestMessage, Role


def _cmd_migrate(args: argparse.Namespace) -> int:
    with ChatHistory() as history:
        version = history.initialize(config.DatabaseConfiguration(path=args.db))
    print(f"Database schema is at version {version}")
    return 0


def _cmd_models(args: argparse.Namespace) -> int:
    client = LLMClient(config.ProviderConfiguration.from_env())
    for model_id in client.get_models().ids:
        print(model_id)
    return 0


def _cmd_chat(args: argparse.Namespace) -> int:
    messages = []
    if args.system:
        messages.append(RequestMessage(role=Role.SYSTEM, content=args.system))
    messages.append(RequestMessage(role=Role.USER, content=args.prompt))
    request = ChatRequest(model=args.model, messages=messages)

    client = LLMClient(config.ProviderConfiguration.from_env())
    if args.stream:
        for chunk in client.stream_completion(request):
            sys.stdout.write(chunk)
            sys.stdout.flush()
        sys.stdout.write("\n")
    else:
        print(client.get_completion(request).content)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chatbridge",
        description="Chat history store and OpenAI-compatible provider client",
    )
    parser.add_argument(
        '--log-level',
        default=config.LOG_LEVEL,
        help='Logging level (default: %(default)s)'
    )
    sub = parser.add_subparsers(dest="command", required=True)

    migrate = sub.add_parser("migrate", help="Create or upgrade the chat store schema")
    migrate.add_argument(
        '--db',
        default=config.DB_PATH,
        help='SQLite database file (default: %(default)s)'
    )
    migrate.set_defaults(func=_cmd_migrate)

    models = sub.add_parser("models", help="List the provider's models")
    models.set_defaults(func=_cmd_models)

    chat = sub.add_parser("chat", help="Send a single prompt")
    chat.add_argument('prompt', help='User message')
    chat.add_argument('--model', '-m', default=config.MODEL_NAME, help='Model name')
    chat.add_argument('--system', '-s', help='Optional system prompt')
    chat.add_argument('--stream', action='store_true', help='Print the reply as it streams')
    chat.set_defaults(func=_cmd_chat)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Command-line interface entry point."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return args.func(args)
    except (ChatbridgeError, requests.RequestException) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
