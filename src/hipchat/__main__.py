"""Demo bot entrypoint. Loads config, joins one room and answers mentions."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any

from loguru import logger

from hipchat import __version__
from hipchat.client import Client
from hipchat.config import Config, load_config_with_env
from hipchat.core.errors import ConfigurationError, HipChatError
from hipchat.events import Message

# Stdlib loggers routed through loguru
_INTERCEPTED_LIBRARIES = ["asyncio"]


def _intercept_logging(level: str) -> None:
    """Route stdlib logging (asyncio debug output) to loguru."""

    class InterceptHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            try:
                log_level = logger.level(record.levelname).name
            except ValueError:
                log_level = str(record.levelno)
            msg = record.getMessage().replace("{", "{{").replace("}", "}}")
            logger.patch(
                lambda r: r.update(
                    name=record.name,
                    function=record.funcName,
                    line=record.lineno,
                ),
            ).opt(exception=record.exc_info).log(log_level, msg)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    for lib in _INTERCEPTED_LIBRARIES:
        lib_logger = logging.getLogger(lib)
        lib_logger.handlers = [InterceptHandler()]
        lib_logger.propagate = False
        lib_logger.setLevel(level)


def _safe_message_filter(record: Any) -> bool:
    """Escape braces/angles in log messages; stanza text is full of both."""
    if isinstance(record.get("message"), str):
        msg = record["message"]
        msg = msg.replace("{", "{{").replace("}", "}}").replace("<", "\\<")
        record["message"] = msg
    return True


def setup_logging(verbose: bool = False) -> None:
    """Configure loguru. verbose=True or LOG_LEVEL=DEBUG enables DEBUG; otherwise INFO."""
    level = "INFO"
    if verbose:
        level = "DEBUG"
    else:
        env_level = (os.environ.get("LOG_LEVEL") or "").upper()
        if env_level in ("TRACE", "DEBUG", "INFO", "WARNING", "ERROR"):
            level = env_level

    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format=("<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan> | {message}"),
        filter=_safe_message_filter,
    )
    _intercept_logging(level)


def is_mention(message: Message, mention_name: str) -> bool:
    """True when the body addresses ``@mention_name`` first."""
    if not mention_name:
        return False
    return message.body.strip().lower().startswith(f"@{mention_name.lower()}")


async def _answer_messages(client: Client, config: Config) -> None:
    mention_name = config.get("bot.mention_name", "")
    reply = config.get("bot.reply", "Hello!")
    async for message in client.messages:
        logger.info("<{}> {}", message.mention_name or message.from_jid, message.body)
        if not is_mention(message, mention_name):
            continue
        room = message.from_jid.partition("/")[0]
        try:
            await client.say(room, reply)
        except HipChatError as exc:
            logger.warning("Reply to {} failed: {}", room, exc)


async def _log_invitations(client: Client) -> None:
    async for rooms in client.invitations:
        for room in rooms:
            logger.info("Invitation to {} ({})", room.id, room.topic or "no reason")


async def _rejoin_notices(client: Client) -> None:
    async for event in client.reconnects:
        logger.info("Session restored for {} (reconnect #{})", event.jid, event.attempt)


async def _run(config: Config) -> None:
    """Connect, join the configured room and serve until the session ends."""
    async with Client(config) as client:
        await client.status(config.get("bot.status", "chat"))
        room = config.get("bot.room")
        if room:
            await client.join(room, config.get("bot.full_name") or config.resource)
            logger.info("Joined {}", room)
        await asyncio.gather(
            _answer_messages(client, config),
            _log_invitations(client),
            _rejoin_notices(client),
        )
        if client.error is not None:
            logger.error("Client stopped: {}", client.error)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="HipChat XMPP demo bot")
    parser.add_argument(
        "--config",
        "-c",
        type=Path,
        default=Path("config.yaml"),
        help="Path to config file (default: config.yaml)",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument("--room", help="Room JID to join (overrides bot.room)")
    parser.add_argument("--nick", help="Display name in the room (overrides bot.full_name)")
    parser.add_argument("--status", help="Presence show value (overrides bot.status)")
    parser.add_argument("--resource", help="XMPP resource (overrides resource)")
    return parser


def cli_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Config overrides for the flags that were given on the command line."""
    bot = {
        key: value
        for key, value in (("room", args.room), ("full_name", args.nick), ("status", args.status))
        if value is not None
    }
    overrides: dict[str, Any] = {}
    if bot:
        overrides["bot"] = bot
    if args.resource is not None:
        overrides["resource"] = args.resource
    return overrides


def main() -> None:
    """Main entrypoint."""
    args = build_parser().parse_args()

    setup_logging(args.verbose)

    if not args.config.exists():
        logger.error("Config file not found: {}", args.config)
        sys.exit(1)

    try:
        config = Config(load_config_with_env(args.config, cli_overrides(args)))
    except ConfigurationError as exc:
        logger.error("Invalid config {}: {}", args.config, exc)
        sys.exit(1)
    logger.info("Config loaded from {}", args.config)

    # uvloop if available for better I/O throughput
    try:
        import uvloop

        uvloop.run(_run(config))
    except ImportError:
        asyncio.run(_run(config))


if __name__ == "__main__":
    main()
