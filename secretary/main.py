"""CLI entry point for the NEPQ clinic secretary.

A terminal chat against the real dialogue controller, with sessions kept in
memory.  For production, use the FastAPI server (secretary/server.py).

Usage:
    python -m secretary.main            # normal mode (quiet)
    python -m secretary.main --debug    # debug mode (shows API calls)
    python -m secretary.main --identity 5511999990000 --bot <phone-id>
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import uuid

from dotenv import load_dotenv

from secretary.dialogue import DialogueController
from secretary.services.cost import CostGovernor
from secretary.services.llm import LLMGateway
from secretary.services.localization import Localizer
from secretary.services.sessions import SessionStore
from secretary.services.store import FailoverStore
from secretary.services.tenants import build_tenant_directory
from secretary.services.whatsapp_client import split_reply

logger = logging.getLogger(__name__)


def _configure_logging(debug: bool = False) -> None:
    """Set up logging: WARNING by default, DEBUG when --debug is passed."""
    root_level = logging.DEBUG if debug else logging.WARNING
    logging.basicConfig(
        level=root_level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    )

    if not debug:
        # Silence chatty HTTP loggers even if root is WARNING
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)

    logging.getLogger("secretary").setLevel(logging.DEBUG if debug else logging.INFO)


def _build_controller() -> DialogueController:
    store = FailoverStore(None)
    gateway = LLMGateway(CostGovernor())
    return DialogueController(
        SessionStore(store),
        gateway,
        Localizer(store, gateway),
        build_tenant_directory(),
    )


def _new_identity() -> str:
    return f"cli-{uuid.uuid4().hex[:8]}"


async def _chat_loop(identity: str, bot_instance_id: str | None) -> None:
    controller = _build_controller()
    logger.info("Started new conversation: %s", identity)

    while True:
        try:
            user_input = (await asyncio.to_thread(input, "Paciente: ")).strip()
        except (KeyboardInterrupt, EOFError):
            print("\n\nTchau!")
            break

        if not user_input:
            continue

        command = user_input.lower()
        if command in ("exit", "quit", "q"):
            print("\nTchau! Cuide-se.")
            break

        if command == "new":
            identity = _new_identity()
            print(f"\n>> New conversation: {identity}\n")
            continue

        if command == "stage":
            session = await controller.sessions.get(identity)
            print(
                f"\n>> stage={session.stage.value} name={session.first_name} "
                f"language={session.language} turns={len(session.conversation_history)}\n"
            )
            continue

        try:
            reply = await controller.process_message(
                identity, user_input, bot_instance_id=bot_instance_id,
            )
        except Exception as e:
            logger.exception("Error processing message")
            print(f"\nSecretária: something went wrong: {e}\n")
            continue
        # Same paragraph split the WhatsApp transport applies.
        for part in split_reply(reply):
            print(f"\nSecretária: {part}")
        print()

    await controller.sessions.close()


def main():
    """Run the interactive CLI chat loop."""
    parser = argparse.ArgumentParser(description="NEPQ clinic secretary CLI")
    parser.add_argument(
        "--debug", action="store_true",
        help="Show all log messages including HTTP requests",
    )
    parser.add_argument(
        "--identity", default=None,
        help="Patient phone number to chat as (default: a random CLI identity)",
    )
    parser.add_argument(
        "--bot", dest="bot_instance_id", default=None,
        help="WhatsApp phone-number id used to resolve the clinic",
    )
    args = parser.parse_args()

    load_dotenv()
    _configure_logging(debug=args.debug)

    print("\n" + "=" * 60)
    print("  NEPQ Clinic Secretary - CLI Chat")
    print("=" * 60)
    print("  Type your message and press Enter.")
    print("  Commands: 'quit' to exit, 'new' for a new conversation,\n"
          "            'stage' to inspect the session.")
    print("=" * 60 + "\n")

    try:
        asyncio.run(_chat_loop(args.identity or _new_identity(), args.bot_instance_id))
    except KeyboardInterrupt:
        print("\n\nTchau!")


if __name__ == "__main__":
    main()
