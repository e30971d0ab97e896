"""convo - terminal chat on top of the conversation engine.

Usage:
    python -m convo.main                  # Start a new conversation
    python -m convo.main --load <id>      # Resume a saved conversation
    python -m convo.main --list           # List recent conversations
    python -m convo.main --init           # Write the default config
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import structlog

from convo.config import ConvoConfig, get_convo_home, load_config, save_default_config
from convo.core.engine import ConversationEngine
from convo.core.errors import NotFound
from convo.core.storage import build_storage

logger = structlog.get_logger()


def setup_logging(level: str = "info") -> None:
    """Configure structured logging."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer() if sys.stderr.isatty() else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


async def list_conversations(config: ConvoConfig, limit: int = 10) -> None:
    storage = build_storage(config.storage)
    for convo in await storage.list_recent(limit):
        stamp = convo.last_interaction.strftime("%Y-%m-%d %H:%M")
        print(f"{convo.id}  {stamp}  {convo.message_count:>3} msgs  {convo.title}")


async def async_main(config: ConvoConfig, conversation_id: str | None = None) -> None:
    """Async entry point for CLI mode."""
    from convo.ui.cli import CLI

    async with ConversationEngine.from_config(config) as engine:
        if conversation_id:
            try:
                await engine.load_conversation(conversation_id, save_existing=False)
            except NotFound:
                print(f"No conversation with id {conversation_id}")
                return
        await CLI(engine).run()
        await engine.save_conversation()


def main() -> None:
    parser = argparse.ArgumentParser(prog="convo", description="Chat with a remote model")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.yaml")
    parser.add_argument("--init", action="store_true", help="Write the default config and exit")
    parser.add_argument("--list", action="store_true", help="List recent conversations")
    parser.add_argument("--load", metavar="ID", default=None, help="Resume a saved conversation")
    args = parser.parse_args()

    if args.init:
        path = save_default_config(args.config)
        print(f"Default config written to {path}")
        return

    get_convo_home().mkdir(parents=True, exist_ok=True)
    config = load_config(args.config)
    setup_logging(config.log_level)

    if args.list:
        asyncio.run(list_conversations(config))
        return

    try:
        asyncio.run(async_main(config, args.load))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
