"""CLI entry point for the Sonrisas dental assistant.

A terminal chat loop for local testing.  For production, use the FastAPI
server (src/server.py).

Usage:
    python -m src.main            # normal mode (quiet)
    python -m src.main --debug    # debug mode (shows routing and API calls)
"""

from __future__ import annotations

import argparse
import logging
import uuid

from dotenv import load_dotenv

from src.agent import TurnController, create_dental_agent
from src.config import MAX_SESSIONS, MAX_TOOL_ROUNDS, SESSION_TTL_SECONDS
from src.services.sessions import ConversationStore

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("src").setLevel(logging.DEBUG if debug else logging.INFO)


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Sonrisas dental assistant CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including tool routing",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  Clínica Dental Sonrisas - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new session.")
    print("=" * 60 + "\n")

    controller = TurnController(
        create_dental_agent(max_tool_rounds=MAX_TOOL_ROUNDS),
        ConversationStore(max_sessions=MAX_SESSIONS, ttl_seconds=SESSION_TTL_SECONDS),
        max_tool_rounds=MAX_TOOL_ROUNDS,
    )
    session_id = str(uuid.uuid4())
    logger.info("Started new session: %s", session_id)

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue

        if user_input.lower() in ("exit", "quit", "q"):
            print("\n¡Hasta pronto!")
            break

        if user_input.lower() == "new":
            session_id = str(uuid.uuid4())
            print(f"\n>> New session started: {session_id[:8]}...\n")
            continue

        try:
            reply = controller.handle(session_id, user_input)
        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            break
        print(f"\nDr. Jimmy: {reply}\n")


if __name__ == "__main__":
    main()
