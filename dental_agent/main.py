"""Terminal chat with the dental booking assistant.

Runs the same ``ChatEngine`` as the API server, against the configured
database, with calendar and email follow-ups executed inline.

Usage:
    python -m dental_agent.main            # normal mode (quiet)
    python -m dental_agent.main --debug    # debug mode (shows tool calls)
    python -m dental_agent.main --seed     # add demo dentists to an empty DB
"""

from __future__ import annotations

import argparse
import logging

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ASSISTANT = "Assistant"


def _configure_logging(debug: bool = False) -> None:
    """WARNING by default, DEBUG when --debug is passed."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )
    if not debug:
        for noisy in ("httpx", "httpcore", "anthropic", "googleapiclient", "botocore"):
            logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("dental_agent").setLevel(logging.DEBUG if debug else logging.INFO)


def _print_buttons(quick_replies: list[dict[str, str]]) -> None:
    if quick_replies:
        print("  [" + "] [".join(b["label"] for b in quick_replies) + "]\n")


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="Dental booking assistant CLI")
    parser.add_argument("--debug", action="store_true", help="Show all log messages")
    parser.add_argument("--seed", action="store_true", help="Insert demo dentists if none exist")
    parser.add_argument("--language", default="en", choices=["en", "nl"], help="Conversation language")
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    # Imported after load_dotenv so config picks up .env values
    from dental_agent.agent import create_dental_agent
    from dental_agent.db import build_engine, build_session_factory, init_db, seed_demo_data
    from dental_agent.engine import ChatEngine
    from dental_agent.prompts import get_templates
    from dental_agent.services.booking import BookingService
    from dental_agent.services.calendar_client import GoogleCalendarClient
    from dental_agent.services.notifications import EmailNotifier
    from dental_agent.services.quick_replies import QuickReplyClassifier
    from dental_agent.services.side_effects import BookingSideEffects, InlineDispatcher

    db_engine = build_engine()
    init_db(db_engine)
    session_factory = build_session_factory(db_engine)
    if args.seed:
        added = seed_demo_data(session_factory)
        print(f">> Seeded {added} demo dentists." if added else ">> Database already has dentists.")

    booking = BookingService(
        session_factory,
        dispatcher=InlineDispatcher(),
        side_effects=BookingSideEffects(session_factory, GoogleCalendarClient(), EmailNotifier()),
    )
    engine = ChatEngine(session_factory, create_dental_agent(), booking, classifier=QuickReplyClassifier())

    print("\n" + "=" * 60)
    print("  Dental Booking Assistant - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new session.")
    print("=" * 60 + "\n")

    started = engine.start_session(args.language, source="cli")
    session_id = started.session_id
    print(f"{ASSISTANT}: {started.text}\n")
    _print_buttons(started.quick_replies)

    while True:
        try:
            user_input = input("You: ").strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nGoodbye!")
            break

        if not user_input:
            continue

        if user_input.lower() in ("exit", "quit", "q"):
            print("\nGoodbye! Have a great day!")
            break

        if user_input.lower() == "new":
            started = engine.start_session(args.language, source="cli")
            session_id = started.session_id
            print(f"\n>> New session started: {session_id[:8]}...\n")
            print(f"{ASSISTANT}: {started.text}\n")
            _print_buttons(started.quick_replies)
            continue

        try:
            result = engine.process_message(session_id, user_input, args.language, source="cli")
        except KeyboardInterrupt:
            print("\n\nGoodbye!")
            break
        except Exception as e:
            logger.exception("Error processing message")
            print(f"\n{ASSISTANT}: {get_templates(args.language)['error']} ({e})")
            print("     Please try again or type 'new' to start a fresh session.\n")
            continue

        print(f"\n{ASSISTANT}: {result.text}\n")
        if result.booking:
            print(f"  >> Booking reference: {result.booking.get('reference_code')}\n")
        _print_buttons(result.quick_replies)

    db_engine.dispose()


if __name__ == "__main__":
    main()
