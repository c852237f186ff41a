#!/usr/bin/env python3
"""
Maya live voice companion: terminal front end.

    maya.py talk [--voice NAME]   start a live voice conversation (Ctrl+C to end)
    maya.py history               print the conversation log
    maya.py events                print flagged events, most recent first
    maya.py clear                 delete conversation log and flagged events
    maya.py voice [NAME]          show or change the selected voice
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from config import AVAILABLE_VOICES, ConfigurationError, STORE_FILE
from conversation_store import ConversationStore, JsonFileStore
from live_transport import TransportError
from session_controller import SessionController, SessionState

log = logging.getLogger("maya")


def _fmt_time(dt):
    return dt.astimezone().strftime("%H:%M:%S")


def print_message(message):
    print(f"[{_fmt_time(message.created_at)}] {message.role.value}: {message.text}", flush=True)


def print_event(event):
    print(f"[{event.created_at.astimezone():%Y-%m-%d %H:%M:%S}] "
          f"{event.severity.value.upper():6} \"{event.keyword}\" in: {event.context}", flush=True)


async def talk(store, voice=None):
    """Run one live conversation until Ctrl+C or the session ends."""
    controller = SessionController(store)
    if voice:
        controller.set_voice(voice)

    finished = asyncio.Event()

    def on_state(state):
        print(f"-- {state.value}", flush=True)
        if state in (SessionState.DISCONNECTED, SessionState.ERROR):
            finished.set()

    controller.on('state_changed', on_state)
    controller.on('message', print_message)
    controller.on('error', lambda msg: print(f"Error: {msg}", file=sys.stderr, flush=True))

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, controller.disconnect)
    loop.add_signal_handler(signal.SIGTERM, controller.disconnect)

    try:
        await controller.connect()
    except (ConfigurationError, PermissionError, TransportError):
        await controller.shutdown()
        return 1

    await finished.wait()
    await controller.shutdown()
    log.info("Session ended (%d messages, %d flagged events on record)",
             len(controller.messages), len(controller.flagged_events))
    return 1 if controller.state is SessionState.ERROR else 0


def main():
    parser = argparse.ArgumentParser(description="Maya live voice companion")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--store", type=Path, default=STORE_FILE,
                        help=f"State file (default: {STORE_FILE})")
    sub = parser.add_subparsers(dest="command")

    talk_p = sub.add_parser("talk", help="Start a live conversation")
    talk_p.add_argument("--voice", choices=sorted(AVAILABLE_VOICES), help="Voice for this and future sessions")
    sub.add_parser("history", help="Print the conversation log")
    sub.add_parser("events", help="Print flagged events")
    sub.add_parser("clear", help="Delete conversation log and flagged events")
    voice_p = sub.add_parser("voice", help="Show or change the voice")
    voice_p.add_argument("name", nargs="?", choices=sorted(AVAILABLE_VOICES))

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    store = ConversationStore(JsonFileStore(args.store))
    store.load()

    command = args.command or "talk"
    if command == "talk":
        return asyncio.run(talk(store, getattr(args, "voice", None)))

    if command == "history":
        for message in store.messages:
            print_message(message)
        if not store.messages:
            print("No messages yet.")
    elif command == "events":
        for event in store.flagged_events:
            print_event(event)
        if not store.flagged_events:
            print("No flagged events.")
    elif command == "clear":
        store.clear_history()
        print("History cleared.")
    elif command == "voice":
        if args.name:
            store.set_voice(args.name)
        for name, label in AVAILABLE_VOICES.items():
            marker = "*" if name == store.voice else " "
            print(f" {marker} {label}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
