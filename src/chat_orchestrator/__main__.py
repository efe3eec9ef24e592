"""CLI entry point for chat-orchestrator."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from typing import Any

from chat_orchestrator.ai.stream import Done, StreamError, TextDelta, ToolCall, ToolResult
from chat_orchestrator.app import ChatOrchestratorApp
from chat_orchestrator.config import AppConfig, load_config
from chat_orchestrator.core.ids import new_id
from chat_orchestrator.core.types import Identity
from chat_orchestrator.errors import ChatError, NotFoundError
from chat_orchestrator.log import setup_logging


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="chat-orchestrator",
        description="Conversational session orchestrator with streaming, tool-augmented replies",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    def add_config_args(sub: argparse.ArgumentParser) -> None:
        sub.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
        sub.add_argument("-e", "--env", default=".env", help="Path to .env file")

    def add_identity_args(sub: argparse.ArgumentParser, flag: str) -> None:
        sub.add_argument(flag, dest="caller", default=None, help="Caller user id (omit for anonymous)")
        sub.add_argument(
            "-r", "--role", action="append", default=[], help="Caller role (repeatable)"
        )

    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    add_config_args(check_parser)

    chat_parser = subparsers.add_parser("chat", help="Interactive chat in the terminal")
    add_config_args(chat_parser)
    add_identity_args(chat_parser, "--user")
    chat_parser.add_argument("-s", "--session", default=None, help="Continue an existing session id")

    sessions_parser = subparsers.add_parser("sessions", help="List a user's sessions")
    add_config_args(sessions_parser)
    sessions_parser.add_argument("user_id", help="Owner whose sessions to list")
    add_identity_args(sessions_parser, "--as-user")

    show_parser = subparsers.add_parser("show", help="Print a session")
    add_config_args(show_parser)
    show_parser.add_argument("session_id", help="Session id")
    show_parser.add_argument("user_id", help="Owner of the session")
    add_identity_args(show_parser, "--as-user")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "config-check":
        _check_config(args.config, args.env)
        return

    config = _load(args.config, args.env)
    setup_logging(config.log_level, config.log_json)
    identity = Identity(user_id=args.caller, roles=frozenset(args.role))

    try:
        match args.command:
            case "chat":
                asyncio.run(_chat(config, identity, args.session))
            case "sessions":
                asyncio.run(_list_sessions(config, identity, args.user_id))
            case "show":
                asyncio.run(_show_session(config, identity, args.session_id, args.user_id))
    except ChatError as e:
        print(json.dumps(e.to_dict()), file=sys.stderr)
        sys.exit(1)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        pass


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    try:
        config = load_config(config_path, env_path)
        print(f"Configuration valid: {config_path}")
        print(f"  Data directory: {config.data_dir}")
        print(f"  Storage: {config.storage.db_path}")
        print(f"  Model: {config.ai.model} (max steps {config.ai.max_steps})")
        print(f"  Anthropic: {'configured' if config.anthropic else 'missing'}")
        print(f"  Cache: {config.cache.backend} (ttl {config.cache.ttl_seconds}s)")
        print(f"  Tools: {', '.join(config.ai.tools) or '(none)'}")
        print(f"  Sandbox: {config.tools.sandbox_dir}")
        print(f"  Reference: {config.tools.reference_title} ({config.tools.reference_path})")
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _load(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Run 'python install.py' first or copy config.example.yaml to config.yaml")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


async def _chat(config: AppConfig, identity: Identity, session_id: str | None) -> None:
    async with ChatOrchestratorApp(config) as app:
        history: list[dict[str, Any]] = []
        if session_id is None:
            session_id = new_id()
        else:
            try:
                session = await app.handler.get_session_content(
                    session_id, identity.user_id or "", identity
                )
                history = [m.to_dict() for m in session.messages]
            except NotFoundError:
                pass

        print(f"Session {session_id} (Ctrl-D to quit)")
        while True:
            try:
                text = await asyncio.to_thread(input, "> ")
            except EOFError:
                print()
                break
            if not text.strip():
                continue

            history.append(
                {"id": new_id(), "role": "user", "parts": [{"type": "text", "text": text}]}
            )
            try:
                stream = await app.handler.submit_turn(
                    {"id": session_id, "trigger": "submit-message", "messages": history}, identity
                )
            except ChatError as e:
                print(json.dumps(e.to_dict()), file=sys.stderr)
                if e.kind != "upstream_generation_error":
                    history.pop()
                continue

            reply: list[str] = []
            try:
                async for chunk in stream:
                    match chunk:
                        case TextDelta(text=delta):
                            reply.append(delta)
                            print(delta, end="", flush=True)
                        case ToolCall(tool_name=name):
                            print(f"\n[tool: {name}]", file=sys.stderr)
                        case ToolResult(tool_name=name, is_error=True):
                            print(f"[tool failed: {name}]", file=sys.stderr)
                        case StreamError():
                            error = {"error": chunk.kind, "message": chunk.message}
                            print(f"\n{json.dumps(error)}", file=sys.stderr)
                        case Done(message_id=message_id) if message_id:
                            history.append(
                                {
                                    "id": message_id,
                                    "role": "assistant",
                                    "parts": [{"type": "text", "text": "".join(reply)}],
                                }
                            )
            finally:
                await stream.aclose()
            print()


async def _list_sessions(config: AppConfig, identity: Identity, user_id: str) -> None:
    async with ChatOrchestratorApp(config) as app:
        for session_id in await app.handler.list_sessions_for_user(user_id, identity):
            print(session_id)


async def _show_session(config: AppConfig, identity: Identity, session_id: str, user_id: str) -> None:
    async with ChatOrchestratorApp(config) as app:
        session = await app.handler.get_session_content(session_id, user_id, identity)
        print(json.dumps(session.to_dict(), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
