"""
Command-line interface for Shodhak.
"""

import argparse
import asyncio
import logging
import sys

import structlog
import uvicorn

from .config import get_settings

logger = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    """Route structlog through stdlib logging with a console renderer."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level.upper())
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def main() -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="shodhak",
        description="Shodhak - conversational research assistant",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument("--host", default=None, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    subparsers.add_parser("sweep", help="Expire idle sessions once and exit")

    chat_parser = subparsers.add_parser("chat", help="Chat with the agent in the terminal")
    chat_parser.add_argument("--user", default="local", help="User ID to chat as")
    chat_parser.add_argument("--session", default=None, help="Resume an existing session")

    subparsers.add_parser("config", help="Show configuration")

    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "serve":
        run_server(args.host or settings.host, args.port or settings.port, args.reload)
    elif args.command == "sweep":
        asyncio.run(sweep_once())
    elif args.command == "chat":
        asyncio.run(interactive_chat(args.user, args.session))
    elif args.command == "config":
        show_config()
    else:
        parser.print_help()


def run_server(host: str, port: int, reload: bool) -> None:
    """Run the FastAPI server."""
    logger.info("Starting Shodhak server", host=host, port=port)

    uvicorn.run(
        "shodhak.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level="info",
    )


async def sweep_once() -> int:
    """Bulk-expire sessions idle longer than the TTL."""
    from .models import init_database
    from .store import SessionStore

    settings = get_settings()
    session_maker = await init_database(settings.database_url)
    count = await SessionStore(session_maker).expire_stale_sessions(settings.session_ttl)
    print(f"Expired {count} idle session(s).")
    return count


async def interactive_chat(user_id: str, session_id: str | None = None) -> None:
    """Terminal chat loop. /new starts a new session, /quit exits."""
    from .api.app import create_agent
    from .models import init_database

    settings = get_settings()
    session_maker = await init_database(settings.database_url)
    agent, openalex = create_agent(settings, session_maker)

    print("Shodhak research assistant. Type /new for a new session, /quit to exit.\n")
    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "you> ")
            except EOFError:
                break

            message = line.strip()
            if not message:
                continue
            if message == "/quit":
                break
            if message == "/new":
                session_id = None
                print("Started a new session.\n")
                continue

            response = await agent.chat(user_id, message, session_id)
            session_id = response.session_id

            print(f"\nshodhak> {response.message}\n")
            if response.tools_used:
                print(f"  [tools: {', '.join(response.tools_used)} | papers: {len(response.papers)}]\n")
    finally:
        await openalex.close()


def show_config() -> None:
    """Show current configuration."""
    settings = get_settings()

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    llm = settings.get_llm_config()
    reasoning = settings.get_reasoning_llm_config()

    print("\n=== Shodhak Configuration ===\n")

    print("Server:")
    print(f"  Host: {settings.host}")
    print(f"  Port: {settings.port}")
    print(f"  Debug: {settings.debug}")

    print("\nLLM:")
    print(f"  Provider: {llm.provider}")
    print(f"  Chat Model: {llm.model}")
    print(f"  Reasoning Model: {reasoning.model}")
    print(f"  OpenAI Key: {mask(settings.openai_api_key)}")
    print(f"  Anthropic Key: {mask(settings.anthropic_api_key)}")
    print(f"  Groq Key: {mask(settings.groq_api_key)}")

    print("\nSessions:")
    print(f"  TTL: {settings.session_ttl_minutes} min")
    print(f"  Compression Threshold: {settings.compression_threshold}")
    print(f"  Recent Buffer: {settings.recent_buffer_size}")
    print(f"  Max Iterations: {settings.max_iterations}")

    print("\nDatabase:")
    print(f"  URL: {settings.database_url}")


if __name__ == "__main__":
    main()
