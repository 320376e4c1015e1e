"""
Command Line Interface for the MindsDB RAG Agent.

Provides CLI commands for chatting with the deployed agent and for
inspecting and maintaining the session table.
"""

import asyncio
import json
import sys

import structlog

from mindsdb_rag.exceptions import MindsDBRAGError

# Configure logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


async def chat_interactive(merchant_id: str, user_id: str):
    """Start an interactive chat session."""
    from mindsdb_rag.models import ChatRequest
    from mindsdb_rag.services import AgentChatService

    service = AgentChatService()
    session_id = None

    print("\n🛒 MindsDB RAG Assistant")
    print("Type 'quit' or 'exit' to end the session")
    print("Type 'new' to start a new session")
    print("-" * 50)

    while True:
        try:
            user_input = input("\nYou: ").strip()

            if not user_input:
                continue

            if user_input.lower() in ("quit", "exit"):
                print("\nGoodbye! 👋")
                break

            if user_input.lower() == "new":
                session_id = None
                print("\n🔄 Starting new session...")
                continue

            response = await service.process_chat(
                ChatRequest(
                    query=user_input,
                    merchant_id=merchant_id,
                    user_id=user_id,
                    session_id=session_id,
                )
            )
            session_id = response.session_id
            print(f"\n🤖 Agent: {response.response}")

        except KeyboardInterrupt:
            print("\n\nGoodbye! 👋")
            break
        except MindsDBRAGError as e:
            logger.error("Chat error", error=str(e))
            print(f"\n❌ Error: {str(e)}")


async def ask(question: str, merchant_id: str, user_id: str, session_id: str | None = None):
    """Send a single question to the agent."""
    from mindsdb_rag.models import ChatRequest
    from mindsdb_rag.services import AgentChatService

    service = AgentChatService()
    response = await service.process_chat(
        ChatRequest(
            query=question,
            merchant_id=merchant_id,
            user_id=user_id,
            session_id=session_id,
        )
    )

    print(f"\n📝 Question: {question}")
    print(f"\n🤖 Answer: {response.response}")
    print(f"\n🔑 Session: {response.session_id}")
    print(f"⏱️ Latency: {response.latency_ms:.2f}ms")

    return response


async def list_sessions(user_id: str, limit: int = 10):
    """List a user's most recent sessions."""
    from mindsdb_rag.services import SessionManager

    sessions = await SessionManager().get_user_sessions(user_id, limit=limit)
    if not sessions:
        print(f"No sessions found for user {user_id}.")
        return sessions

    for i, session in enumerate(sessions, 1):
        print(f"{i}. {session.session_id}")
        print(f"   Merchant: {session.merchant_id}")
        print(f"   Messages: {len(session.conversation_history)}")
        print(f"   Last activity: {session.last_activity.isoformat()}")
    return sessions


async def session_stats(merchant_id: str):
    """Print session statistics for a merchant."""
    from mindsdb_rag.services import SessionManager

    stats = await SessionManager().get_session_stats(merchant_id)
    print(json.dumps(stats.model_dump(), indent=2))
    return stats


async def cleanup_sessions(merchant_id: str):
    """Delete a merchant's expired sessions."""
    from mindsdb_rag.services import SessionManager

    count = await SessionManager().cleanup_expired_sessions(merchant_id)
    logger.info("Cleanup complete", merchant_id=merchant_id, deleted=count)
    print(f"🧹 Deleted {count} expired session(s) for merchant {merchant_id}")
    return count


def main():
    """Main CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="MindsDB RAG Agent CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Chat command
    chat_parser = subparsers.add_parser("chat", help="Start interactive chat")
    chat_parser.add_argument("--merchant-id", required=True, help="Merchant identifier")
    chat_parser.add_argument("--user-id", required=True, help="User identifier")

    # Ask command
    ask_parser = subparsers.add_parser("ask", help="Ask a single question")
    ask_parser.add_argument("question", help="Question to ask")
    ask_parser.add_argument("--merchant-id", required=True, help="Merchant identifier")
    ask_parser.add_argument("--user-id", required=True, help="User identifier")
    ask_parser.add_argument("--session-id", help="Continue an existing session")

    # Sessions command
    sessions_parser = subparsers.add_parser("sessions", help="List a user's sessions")
    sessions_parser.add_argument("user_id", help="User identifier")
    sessions_parser.add_argument("--limit", type=int, default=10, help="Maximum sessions")

    # Stats command
    stats_parser = subparsers.add_parser("stats", help="Session statistics for a merchant")
    stats_parser.add_argument("merchant_id", help="Merchant identifier")

    # Cleanup command
    cleanup_parser = subparsers.add_parser("cleanup", help="Delete expired sessions")
    cleanup_parser.add_argument("merchant_id", help="Merchant identifier")

    args = parser.parse_args()

    try:
        if args.command == "chat":
            asyncio.run(chat_interactive(args.merchant_id, args.user_id))

        elif args.command == "ask":
            asyncio.run(ask(args.question, args.merchant_id, args.user_id, args.session_id))

        elif args.command == "sessions":
            asyncio.run(list_sessions(args.user_id, args.limit))

        elif args.command == "stats":
            asyncio.run(session_stats(args.merchant_id))

        elif args.command == "cleanup":
            asyncio.run(cleanup_sessions(args.merchant_id))

        else:
            parser.print_help()

    except MindsDBRAGError as e:
        logger.error("Command failed", command=args.command, error=str(e))
        sys.exit(1)


if __name__ == "__main__":
    main()
