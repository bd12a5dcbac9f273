#!/usr/bin/env python3
"""
weatherchat CLI — talk to the weather agent from a terminal.

Every command has a short name and standard aliases:

    COMMAND         ALIASES         WHAT IT DOES
    -------         -------         ----------------------------------
    serve           start, up       Start the weatherchat server
    ring            status, ping    Ping a running instance
    ask             chat            Ask one question, or open a chat REPL
    history         list, ls        List conversations or one conversation's messages
    forget          delete, rm      Delete a conversation and its messages
"""

import argparse
import asyncio

from weatherchat import __version__

DEFAULT_URL = "http://localhost:5000"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_serve(args):
    """Start the weatherchat server."""
    import uvicorn
    from weatherchat.config import get_config

    cfg = get_config()
    host = args.host or cfg["server"]["host"]
    port = args.port or cfg["server"]["port"]

    print(f"  weatherchat v{__version__} on {host}:{port}")
    print(f"  Agent: {cfg['agent']['url']}")
    print(f"  Store: {cfg.get('storage', {}).get('backend', 'memory')}")
    print()

    uvicorn.run(
        "weatherchat.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def cmd_ring(args):
    """Ping a running weatherchat instance."""
    import httpx

    url = args.url or DEFAULT_URL
    try:
        resp = httpx.get(f"{url}/api/health", timeout=5)
        if resp.status_code == 200:
            data = resp.json()
            print(f"  {url} is UP (v{data.get('version', '?')})")
            print(f"  Store: {data.get('store', '?')}")
            print(f"  Relay calls in flight: {data.get('relay_in_flight', 0)}")
        else:
            print(f"  ✗  No answer — got HTTP {resp.status_code}")
    except httpx.ConnectError:
        print(f"  ✗  Nothing listening at {url}")
    except Exception as e:
        print(f"  ✗  Error: {e}")


async def _ask_once(client, question: str) -> bool:
    from weatherchat.errors import WeatherChatError

    print("  ◀ ", end="", flush=True)
    try:
        async for text in client.turn(question):
            print(text, end="", flush=True)
    except WeatherChatError as e:
        print(f"\n  ✗  Connection error: {e}")
        return False
    print("\n")
    return True


async def _ask(args):
    from weatherchat.client import WeatherChatClient

    async with WeatherChatClient(base_url=args.url or DEFAULT_URL) as client:
        if args.conversation:
            await client.select(args.conversation)

        if args.question:
            await _ask_once(client, " ".join(args.question))
            return

        print("  Ask about the weather. Type 'exit' or Ctrl-C to leave, 'new' for a fresh thread.\n")
        while True:
            try:
                question = input("  ▶ ").strip()
            except EOFError:
                break
            if not question:
                continue
            if question.lower() in ("exit", "quit", "q"):
                break
            if question.lower() == "new":
                client.new_conversation()
                print("  [new conversation]\n")
                continue
            await _ask_once(client, question)


def cmd_ask(args):
    """Ask a question, or start a REPL when none is given."""
    try:
        asyncio.run(_ask(args))
    except KeyboardInterrupt:
        print("\n  [bye]")


async def _history(args):
    from weatherchat.client import WeatherChatClient

    async with WeatherChatClient(base_url=args.url or DEFAULT_URL) as client:
        if args.conversation:
            for msg in await client.load_messages(args.conversation):
                content = msg["content"]
                if len(content) > 200 and not args.full:
                    content = content[:200] + "..."
                print(f"  [{msg['createdAt']}] {msg['role'].upper()}: {content}")
            return

        conversations = await client.load_conversations()
        if not conversations:
            print("  No conversations yet.")
            return
        for conv in conversations:
            print(f"  {conv['id']}  {conv['updatedAt']}  {conv['title']}")


def cmd_history(args):
    """List conversations, or the messages of one."""
    asyncio.run(_history(args))


async def _forget(args):
    from weatherchat.client import WeatherChatClient
    from weatherchat.errors import NotFoundError

    async with WeatherChatClient(base_url=args.url or DEFAULT_URL) as client:
        try:
            await client.delete_conversation(args.conversation)
        except NotFoundError:
            print(f"  ✗  No conversation {args.conversation}")
            return
        print(f"  Deleted {args.conversation}")


def cmd_forget(args):
    """Delete a conversation."""
    asyncio.run(_forget(args))


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under multiple names."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def _url_option(p):
    p.add_argument("--url", "-u", default=None, help=f"Server URL (default: {DEFAULT_URL})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="weatherchat",
        description="weatherchat — chat with a hosted weather agent.",
        epilog="Run 'weatherchat <command> --help' for command-specific options.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"weatherchat {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_serve(p):
        p.add_argument("--host", default=None, help="Override listen host")
        p.add_argument("--port", "-p", type=int, default=None, help="Override listen port")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")

    _add_command(sub, ["serve", "start", "up"],
                 "Start the weatherchat server", cmd_serve, setup_serve)

    _add_command(sub, ["ring", "status", "ping"],
                 "Ping a running weatherchat instance", cmd_ring, _url_option)

    def setup_ask(p):
        _url_option(p)
        p.add_argument("question", nargs="*", help="Question to ask (omit for interactive REPL)")
        p.add_argument("--conversation", "-c", default=None,
                       help="Continue an existing conversation by id")

    _add_command(sub, ["ask", "chat"],
                 "Ask the weather agent (single question or REPL)", cmd_ask, setup_ask)

    def setup_history(p):
        _url_option(p)
        p.add_argument("conversation", nargs="?", default=None,
                       help="Show this conversation's messages instead of the list")
        p.add_argument("--full", action="store_true", help="Don't truncate long messages")

    _add_command(sub, ["history", "list", "ls"],
                 "List conversations or messages", cmd_history, setup_history)

    def setup_forget(p):
        _url_option(p)
        p.add_argument("conversation", help="Conversation id")

    _add_command(sub, ["forget", "delete", "rm"],
                 "Delete a conversation and its messages", cmd_forget, setup_forget)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
