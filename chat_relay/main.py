"""
Entry point: run the relay server or an interactive terminal chat against it.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
import sys

from chat_relay.chat_service import ChatService, ChatSession
from chat_relay.config import Configuration
from chat_relay.history.models import Message
from chat_relay.llm.exceptions import TurnInProgressError
from chat_relay.logging_utils import configure_logging
from chat_relay.server import run_server

HELP_TEXT = (
    "Commands: /models lists models, /model <id> switches model, "
    "/clear clears the chat, /quit exits."
)


async def serve(config: Configuration) -> None:
    """Run the relay with graceful shutdown handling."""
    if config.optional_api_key() is None:
        logging.warning(
            "Upstream API key is not set; chat requests will be answered "
            "with a configuration error"
        )

    shutdown_event = asyncio.Event()

    def signal_handler() -> None:
        logging.info("Received shutdown signal, initiating graceful shutdown...")
        shutdown_event.set()

    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler)

    try:
        await run_server(config, shutdown_event)
    finally:
        logging.info("Application shutdown complete")


class TerminalRenderer:
    """Prints only the part of the streaming message not yet on screen."""

    def __init__(self) -> None:
        self._printed = 0

    def reset(self) -> None:
        self._printed = 0

    def __call__(self, message: Message) -> None:
        new_text = message.content[self._printed:]
        if new_text:
            print(new_text, end="", flush=True)
            self._printed = len(message.content)
        if not message.streaming:
            print()


async def chat(relay_url: str, model: str | None) -> None:
    """Interactive terminal chat driven by ChatService."""
    session = ChatSession(selected_model=model)
    renderer = TerminalRenderer()

    async with ChatService(
        ChatService.ChatServiceConfig(relay_url=relay_url), session=session
    ) as service:
        try:
            models = await service.load_models()
        except Exception as e:
            logging.warning(f"Could not load model list: {e}")
            models = []

        print(f"Model: {session.selected_model or 'relay default'}. {HELP_TEXT}")

        while True:
            try:
                line = await asyncio.to_thread(input, "> ")
            except EOFError:
                break

            command, _, argument = line.strip().partition(" ")
            if command == "/quit":
                break
            if command == "/clear":
                service.clear()
                continue
            if command == "/models":
                for entry in models:
                    marker = "*" if entry["id"] == session.selected_model else " "
                    print(f"{marker} {entry['id']}  {entry.get('name', '')}")
                continue
            if command == "/model":
                try:
                    session.select_model(argument.strip())
                except ValueError as e:
                    print(e)
                continue

            renderer.reset()
            try:
                result = await service.send_message(line, on_update=renderer)
            except TurnInProgressError as e:
                print(e)
                continue
            if result is None and session.error:
                print(f"Error: {session.error}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chat-relay")
    subcommands = parser.add_subparsers(dest="command", required=True)

    subcommands.add_parser("serve", help="run the streaming relay server")

    chat_parser = subcommands.add_parser("chat", help="chat through a running relay")
    chat_parser.add_argument("--url", default=None, help="relay base URL")
    chat_parser.add_argument("--model", default=None, help="model id to use")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    config = Configuration()
    configure_logging(config.get_logging_config().get("level", "INFO"))

    with contextlib.suppress(KeyboardInterrupt):
        if args.command == "serve":
            asyncio.run(serve(config))
        else:
            server_config = config.get_server_config()
            url = args.url or f"http://{server_config['host']}:{server_config['port']}"
            asyncio.run(chat(url, args.model))


if __name__ == "__main__":
    main()
