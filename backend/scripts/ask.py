# scripts/ask.py
"""
Ask the task service a question from the terminal and print the dashboard.

    python scripts/ask.py "How many customers signed up last month?"
    python scripts/ask.py --stream --conversations ./data/conversations.json "..."
"""
import argparse
import asyncio
import logging
import sys

from askboard.core.config import settings
from askboard.services.chat_service import ChatService
from askboard.services.conversation_store import ConversationStore
from askboard.services.orchestrator import TaskOrchestrator
from askboard.services.renderers import RendererRegistry
from askboard.services.repository import InMemoryConversationRepository, JsonFileConversationRepository
from askboard.services.task_client import TaskClient


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Ask a question and render the resulting dashboard.")
    parser.add_argument("question", help="free-text question")
    parser.add_argument("--base-url", default=settings.API_BASE_URL)
    parser.add_argument("--token", default=settings.API_TOKEN)
    parser.add_argument("--stream", action="store_true", help="use the server-sent-events endpoint")
    parser.add_argument("--timeout", type=float, default=settings.TASK_TIMEOUT_SECONDS)
    parser.add_argument(
        "--conversations",
        default=None,
        help="JSON file to keep the conversation in (default: not persisted)",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser.parse_args(argv)


def print_progress(progress: float, message):
    print(f"[{progress:5.1f}%] {message or 'Processing...'}")


async def run(args) -> int:
    client = TaskClient(base_url=args.base_url, token=args.token)
    orchestrator = TaskOrchestrator(client, timeout=args.timeout)
    repository = (
        JsonFileConversationRepository(args.conversations)
        if args.conversations
        else InMemoryConversationRepository()
    )
    service = ChatService(orchestrator, ConversationStore(repository))

    turn = await service.send(args.question, use_stream=args.stream, on_progress=print_progress)
    if turn is None:
        print("Message cannot be empty", file=sys.stderr)
        return 2

    if turn.assistant_message is not None:
        print()
        print(turn.assistant_message.content)
    if turn.plan is not None:
        registry = RendererRegistry()
        for block in registry.render_plan(turn.plan):
            print()
            print(block)
    return 0 if turn.outcome.ok else 1


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)
    try:
        code = asyncio.run(run(args))
    except KeyboardInterrupt:
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
