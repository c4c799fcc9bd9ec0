#!/usr/bin/env python3
"""Chat with a running agent backend from the terminal.

Usage:
    ACCESS_TOKEN=eyJ... python scripts/chat_cli.py
    ACCESS_TOKEN=eyJ... python scripts/chat_cli.py --api-url http://localhost:8080/api --attach notes.pdf

Type a message and press enter. Commands: /new (start a new conversation),
/quit. When the agent asks to run a tool you are prompted to approve it.
"""

import argparse
import asyncio
import logging
import sys

from agent_chat.config import settings
from agent_chat.errors import ChatError
from agent_chat.session import ChatSession
from agent_chat.state import AppState


class TranscriptPrinter:
    """Store listener that writes assistant text as it streams in."""

    def __init__(self) -> None:
        self._printed: dict[str, int] = {}

    def __call__(self, state: AppState) -> None:
        for message in state.chat.messages:
            if message.role != "assistant":
                continue
            already = self._printed.get(message.id, 0)
            if len(message.content) > already:
                sys.stdout.write(message.content[already:])
                sys.stdout.flush()
                self._printed[message.id] = len(message.content)


async def get_access_token() -> str | None:
    return settings.access_token or None


def describe_usage(state: AppState) -> str:
    last = next((m for m in reversed(state.chat.messages) if m.role == "assistant"), None)
    if last is None or last.usage is None:
        return ""
    usage = last.usage
    return f"[{usage.total_tokens} tokens, {usage.duration / 1000:.1f}s]"


async def resolve_approvals(session: ChatSession) -> None:
    while (pending := session.state.chat.pending_approval) is not None:
        approval = pending.mcp_approval
        print(f"\nAgent wants to call {approval.tool_name} on {approval.server_label}")
        if approval.arguments:
            print(f"  arguments: {approval.arguments}")
        answer = await asyncio.to_thread(input, "Approve? [y/N] ")
        sys.stdout.write("AI: ")
        await session.respond_to_approval(answer.strip().lower() in ("y", "yes"))
        print()


async def chat_loop(api_url: str, attachments: list[str]) -> None:
    async with ChatSession(get_access_token, api_url=api_url) as session:
        session.store.subscribe(TranscriptPrinter())
        print(f"Connected to {api_url}. /new starts over, /quit exits.\n")

        while True:
            try:
                text = await asyncio.to_thread(input, "You: ")
            except (EOFError, KeyboardInterrupt):
                print("\nBye!")
                return

            text = text.strip()
            if not text:
                continue
            if text == "/quit":
                return
            if text == "/new":
                session.new_chat()
                print("(new conversation)\n")
                continue

            sys.stdout.write("AI: ")
            try:
                await session.send(text, attachments or None)
                await resolve_approvals(session)
            except ChatError as exc:
                print(f"\n  Error ({exc.kind.value}): {exc.message}")
                session.clear_error()
            attachments = []
            print(f"\n{describe_usage(session.state)}\n")


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--api-url", default=settings.api_url)
    parser.add_argument("--attach", action="append", default=[], help="file to send with the first message")
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not settings.access_token_configured:
        print("ERROR: Set ACCESS_TOKEN environment variable")
        sys.exit(1)

    asyncio.run(chat_loop(args.api_url, args.attach))


if __name__ == "__main__":
    main()
