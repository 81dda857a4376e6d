#!/usr/bin/env python3
"""
Tests for the command line entry point and terminal rendering.
"""

import pytest

from chat_relay.history.models import Message
from chat_relay.main import TerminalRenderer, build_parser


def test_renderer_prints_only_new_text(capsys):
    renderer = TerminalRenderer()
    message = Message(role="assistant", streaming=True)

    message.append("He")
    renderer(message)
    message.append("llo")
    renderer(message)
    message.finalize()
    renderer(message)

    assert capsys.readouterr().out == "Hello\n"


def test_renderer_reset_between_turns(capsys):
    renderer = TerminalRenderer()
    renderer(Message(role="assistant", content="first"))
    renderer.reset()
    renderer(Message(role="assistant", content="second"))

    assert capsys.readouterr().out == "first\nsecond\n"


def test_parser_subcommands():
    parser = build_parser()

    assert parser.parse_args(["serve"]).command == "serve"

    args = parser.parse_args(["chat", "--url", "http://relay:9000", "--model", "x/y"])
    assert args.command == "chat"
    assert args.url == "http://relay:9000"
    assert args.model == "x/y"

    with pytest.raises(SystemExit):
        parser.parse_args([])
