#!/usr/bin/env python3
"""Tests for TranscriptAssembler and the Message record.

Run: python3 test_transcript_assembler.py
"""

import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from transcript_assembler import Message, Role, TranscriptAssembler

PASSED = 0
FAILED = 0
ERRORS = []


def test(name):
    def decorator(fn):
        fn._test_name = name
        return fn
    return decorator


def run_test(fn):
    global PASSED, FAILED
    name = getattr(fn, '_test_name', fn.__name__)
    try:
        if asyncio.iscoroutinefunction(fn):
            asyncio.run(fn())
        else:
            fn()
        PASSED += 1
        print(f"  PASS: {name}")
    except AssertionError as e:
        FAILED += 1
        ERRORS.append((name, str(e)))
        print(f"  FAIL: {name} -- {e}")
    except Exception as e:
        FAILED += 1
        ERRORS.append((name, f"{type(e).__name__}: {e}"))
        print(f"  ERROR: {name} -- {type(e).__name__}: {e}")


# ======================================================================
# Test Group 1: Turn assembly
# ======================================================================

@test("User fragments concatenate into one message on turn complete")
def test_user_fragments():
    asm = TranscriptAssembler()
    asm.append_user_fragment("I feel")
    asm.append_user_fragment(" sad")
    messages = asm.complete_turn()

    assert len(messages) == 1
    assert messages[0].role is Role.USER
    assert messages[0].text == "I feel sad"
    assert asm.is_idle
    assert asm.complete_turn() == [], "Buffers should be empty after the turn"


@test("User message is emitted before model message")
def test_user_then_model_order():
    asm = TranscriptAssembler()
    asm.append_model_fragment("Oh no, ")
    asm.append_user_fragment("My ski broke")
    asm.append_model_fragment("what happened?")
    messages = asm.complete_turn()
    assert [m.role for m in messages] == [Role.USER, Role.MODEL]
    assert messages[1].text == "Oh no, what happened?"


@test("Text is trimmed, inner spacing is kept")
def test_trim():
    asm = TranscriptAssembler()
    asm.append_user_fragment("  hello  ")
    asm.append_user_fragment(" there \n")
    [message] = asm.complete_turn()
    assert message.text == "hello   there"


@test("Blank buffers produce no message")
def test_blank_buffers():
    asm = TranscriptAssembler()
    asm.append_user_fragment("   ")
    asm.append_model_fragment("\n")
    assert asm.complete_turn() == []
    assert asm.is_idle


@test("Fragments are not normalized")
def test_no_normalization():
    asm = TranscriptAssembler()
    for piece in ("Ski", "ing", " is", " AWESOME", "!!"):
        asm.append_model_fragment(piece)
    [message] = asm.complete_turn()
    assert message.text == "Skiing is AWESOME!!"


@test("on_message callback receives each finalized message")
def test_callback():
    received = []
    asm = TranscriptAssembler(on_message=received.append)
    asm.append_user_fragment("hi")
    asm.append_model_fragment("hey Elsa")
    returned = asm.complete_turn()
    assert received == returned
    assert len(received) == 2


@test("Message timestamps come from the clock")
def test_clock():
    fixed = datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    asm = TranscriptAssembler(clock=lambda: fixed)
    asm.append_user_fragment("hi")
    [message] = asm.complete_turn()
    assert message.created_at == fixed


# ======================================================================
# Test Group 2: Interruption
# ======================================================================

@test("interrupt_model discards only the model buffer")
def test_interrupt_model():
    asm = TranscriptAssembler()
    asm.append_user_fragment("wait, stop")
    asm.append_model_fragment("So the thing about glaciers is")
    asm.interrupt_model()
    asm.append_model_fragment("Sure, what's up?")
    messages = asm.complete_turn()
    assert [(m.role, m.text) for m in messages] == [
        (Role.USER, "wait, stop"),
        (Role.MODEL, "Sure, what's up?"),
    ]


@test("interrupt_model emits nothing")
def test_interrupt_emits_nothing():
    received = []
    asm = TranscriptAssembler(on_message=received.append)
    asm.append_model_fragment("half a sentence")
    asm.interrupt_model()
    assert received == []
    assert asm.is_idle


@test("reset clears both buffers without emitting")
def test_reset():
    received = []
    asm = TranscriptAssembler(on_message=received.append)
    asm.append_user_fragment("a")
    asm.append_model_fragment("b")
    asm.reset()
    assert asm.is_idle
    assert asm.complete_turn() == []
    assert received == []


# ======================================================================
# Test Group 3: Message record
# ======================================================================

@test("Messages get unique ids")
def test_unique_ids():
    ids = {Message(role=Role.USER, text="x").id for _ in range(100)}
    assert len(ids) == 100


@test("Message round-trips through dict with a parseable timestamp")
def test_message_dict():
    original = Message(role=Role.MODEL, text="Totally!")
    data = original.to_dict()
    assert data["role"] == "model"
    assert isinstance(data["created_at"], str)
    restored = Message.from_dict(data)
    assert restored == original
    assert isinstance(restored.created_at, datetime)


@test("Message is immutable")
def test_message_frozen():
    message = Message(role=Role.USER, text="hi")
    try:
        message.text = "changed"
    except AttributeError:
        return
    raise AssertionError("Message should be frozen")


# ======================================================================
# Run all tests
# ======================================================================

if __name__ == "__main__":
    print("=" * 60)
    print("TranscriptAssembler Tests")
    print("=" * 60)

    tests = [
        obj for name, obj in sorted(globals().items())
        if callable(obj) and hasattr(obj, '_test_name')
    ]

    print(f"\nRunning {len(tests)} tests...\n")

    for fn in tests:
        run_test(fn)

    print(f"\n{'=' * 60}")
    print(f"Results: {PASSED} passed, {FAILED} failed out of {PASSED + FAILED}")

    if ERRORS:
        print(f"\nFailures:")
        for name, err in ERRORS:
            print(f"  - {name}: {err}")

    print("=" * 60)
    sys.exit(0 if FAILED == 0 else 1)
