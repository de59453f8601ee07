"""CLI entry point for chatsync."""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
from datetime import datetime, timezone

from chatsync.app import ChatSyncApp
from chatsync.config import AppConfig, load_config
from chatsync.log import setup_logging
from chatsync.messenger.models import ChatSummary, Message


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to config file")
    parser.add_argument("-e", "--env", default=".env", help="Path to .env file")
    parser.add_argument("-a", "--account", default=None, help="Account id (default: first configured)")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="chatsync",
        description="Chat synchronization and caching engine for WhatsApp API instances",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    check_parser = subparsers.add_parser("config-check", help="Validate configuration")
    _add_common(check_parser)

    chats_parser = subparsers.add_parser("chats", help="Print the chat list")
    _add_common(chats_parser)

    history_parser = subparsers.add_parser("history", help="Print a chat's message history")
    _add_common(history_parser)
    history_parser.add_argument("chat_id", nargs="?", help="Chat id (default: account's default_chat)")
    history_parser.add_argument("--pages", type=int, default=1, help="Number of pages to load")

    send_parser = subparsers.add_parser("send", help="Send a text message")
    _add_common(send_parser)
    send_parser.add_argument("chat_id", help="Chat id")
    send_parser.add_argument("text", help="Message text")

    watch_parser = subparsers.add_parser("watch", help="Keep a chat in sync until interrupted")
    _add_common(watch_parser)
    watch_parser.add_argument("chat_id", nargs="?", help="Chat id (default: account's default_chat)")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "config-check":
        _check_config(args.config, args.env)
        return

    config = _load(args.config, args.env)
    setup_logging(config.log_level, json_output=config.log_json)

    match args.command:
        case "chats":
            ok = asyncio.run(_chats(config, args.account))
        case "history":
            ok = asyncio.run(_history(config, args.account, args.chat_id, args.pages))
        case "send":
            ok = asyncio.run(_send(config, args.account, args.chat_id, args.text))
        case "watch":
            ok = asyncio.run(_watch(config, args.account, args.chat_id))
        case _:
            parser.error(f"unknown command: {args.command}")
    if not ok:
        sys.exit(1)


def _load(config_path: str, env_path: str) -> AppConfig:
    try:
        return load_config(config_path, env_path)
    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Copy config.example.yaml to config.yaml and fill in your accounts")
        sys.exit(1)
    except Exception as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)


def _check_config(config_path: str, env_path: str) -> None:
    """Validate configuration and print summary."""
    config = _load(config_path, env_path)
    print(f"Configuration valid: {config_path}")
    print(f"  Data directory: {config.data_dir}")
    print(f"  Accounts configured: {len(config.accounts)}")
    for account in config.accounts:
        problem = account.to_account().credentials_problem()
        status = f"INVALID ({problem})" if problem else "ok"
        print(f"    - {account.id} ({account.provider}) instance={account.instance_id} [{status}]")
    print(f"  Storage: {config.storage.db_path}")
    polling = f"every {config.polling.interval_seconds}s" if config.polling.enabled else "disabled"
    print(f"  Polling: {polling}")


def _without_polling(config: AppConfig) -> AppConfig:
    return config.model_copy(update={"polling": config.polling.model_copy(update={"enabled": False})})


def _format_time(timestamp: int) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")


def _print_chat(chat: ChatSummary) -> None:
    print(f"{_format_time(chat.timestamp)}  {chat.name:<24.24}  {chat.last_message[:60]}  [{chat.chat_id}]")


def _print_message(message: Message) -> None:
    arrow = "->" if message.is_outbound else "<-"
    body = message.text if message.text is not None else f"<{message.kind}>"
    print(f"{_format_time(message.timestamp)} {arrow} {body}")


async def _chats(config: AppConfig, account_id: str | None) -> bool:
    app = ChatSyncApp(_without_polling(config))
    await app.start()
    try:
        await app.open_account(account_id)
        orchestrator = app.orchestrator
        for chat in orchestrator.chats:
            _print_chat(chat)
        if orchestrator.error:
            print(f"Error: {orchestrator.error}", file=sys.stderr)
            return False
        return True
    finally:
        await app.stop()


async def _history(config: AppConfig, account_id: str | None, chat_id: str | None, pages: int) -> bool:
    app = ChatSyncApp(_without_polling(config))
    await app.start()
    try:
        account_cfg = await app.open_account(account_id)
        chat_id = chat_id or account_cfg.default_chat
        if not chat_id:
            print("Error: no chat id given and no default_chat configured", file=sys.stderr)
            return False

        orchestrator = app.orchestrator
        await orchestrator.select_chat(chat_id)
        for _ in range(max(pages, 1) - 1):
            if not await orchestrator.load_more():
                break
        for message in orchestrator.messages:
            _print_message(message)
        if orchestrator.error:
            print(f"Error: {orchestrator.error}", file=sys.stderr)
            return False
        return True
    finally:
        await app.stop()


async def _send(config: AppConfig, account_id: str | None, chat_id: str, text: str) -> bool:
    app = ChatSyncApp(_without_polling(config))
    await app.start()
    try:
        await app.open_account(account_id)
        orchestrator = app.orchestrator
        await orchestrator.select_chat(chat_id)
        if not await orchestrator.send(text):
            print(f"Send failed: {orchestrator.error}", file=sys.stderr)
            return False
        print(f"Sent to {chat_id}")
        return True
    finally:
        await app.stop()


async def _watch(config: AppConfig, account_id: str | None, chat_id: str | None) -> bool:
    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            signal.signal(sig, lambda s, f: _signal_handler())

    app = ChatSyncApp(config)
    await app.start()
    try:
        account_cfg = await app.open_account(account_id)
        orchestrator = app.orchestrator
        if not orchestrator.poller.running:
            orchestrator.start_polling()
        chat_id = chat_id or account_cfg.default_chat
        if not chat_id:
            for chat in orchestrator.chats[:20]:
                _print_chat(chat)
            await stop_event.wait()
            return True

        await orchestrator.select_chat(chat_id)
        for message in orchestrator.messages[-20:]:
            _print_message(message)
        last_seen = orchestrator.messages[-1].timestamp if orchestrator.messages else 0

        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=config.polling.interval_seconds)
            except asyncio.TimeoutError:
                pass
            for message in orchestrator.messages:
                if message.timestamp > last_seen:
                    _print_message(message)
                    last_seen = message.timestamp
        return True
    finally:
        await app.stop()


if __name__ == "__main__":
    main()
