#!/usr/bin/env python3
"""Tests for inbound message parsing and the session setup payload.

Run: python3 test_live_messages.py
"""

import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from live_messages import (
    INTERRUPTED, TURN_COMPLETE, MessageKind, Speaker, parse_server_message,
)
from live_transport import SessionConfig, build_setup_message

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
# Test Group 1: parse_server_message
# ======================================================================

@test("Output transcription becomes a model fragment")
def test_output_transcription():
    [msg] = parse_server_message({"serverContent": {"outputTranscription": {"text": "Hey!"}}})
    assert msg.kind is MessageKind.TRANSCRIPT_FRAGMENT
    assert msg.speaker is Speaker.MODEL
    assert msg.data == "Hey!"


@test("Input transcription becomes a user fragment")
def test_input_transcription():
    [msg] = parse_server_message({"serverContent": {"inputTranscription": {"text": "hi"}}})
    assert msg.speaker is Speaker.USER
    assert msg.data == "hi"


@test("Inline audio parts become audio chunks")
def test_audio_parts():
    payload = {"serverContent": {"modelTurn": {"parts": [
        {"inlineData": {"mimeType": "audio/pcm;rate=24000", "data": "AAA="}},
        {"text": "ignored"},
        {"inlineData": {"mimeType": "audio/pcm;rate=24000", "data": "AQA="}},
    ]}}}
    messages = parse_server_message(payload)
    assert [m.kind for m in messages] == [MessageKind.AUDIO_CHUNK, MessageKind.AUDIO_CHUNK]
    assert [m.data for m in messages] == ["AAA=", "AQA="]


@test("Combined payload keeps transcript, turn, audio, interrupt order")
def test_combined_order():
    payload = {"serverContent": {
        "interrupted": True,
        "modelTurn": {"parts": [{"inlineData": {"data": "AAA="}}]},
        "turnComplete": True,
        "inputTranscription": {"text": "me"},
        "outputTranscription": {"text": "you"},
    }}
    kinds = [m.kind for m in parse_server_message(payload)]
    assert kinds == [
        MessageKind.TRANSCRIPT_FRAGMENT,
        MessageKind.TRANSCRIPT_FRAGMENT,
        MessageKind.TURN_COMPLETE,
        MessageKind.AUDIO_CHUNK,
        MessageKind.INTERRUPTED,
    ], kinds


@test("Turn complete and interrupted flags")
def test_flags():
    assert parse_server_message({"serverContent": {"turnComplete": True}}) == [TURN_COMPLETE]
    assert parse_server_message({"serverContent": {"interrupted": True}}) == [INTERRUPTED]
    assert parse_server_message({"serverContent": {"turnComplete": False}}) == []


@test("Error payloads become error messages")
def test_error():
    [msg] = parse_server_message({"error": {"code": 500, "message": "boom"}})
    assert msg.kind is MessageKind.ERROR
    assert msg.data == "boom"


@test("Unrelated or malformed payloads yield nothing")
def test_ignored():
    assert parse_server_message({"setupComplete": {}}) == []
    assert parse_server_message({"serverContent": "weird"}) == []
    assert parse_server_message({"serverContent": {"outputTranscription": {"text": ""}}}) == []
    assert parse_server_message(["not", "a", "dict"]) == []


@test("Malformed nested fields are skipped, not raised")
def test_malformed_nested_fields():
    payload = {"serverContent": {
        "outputTranscription": "not an object",
        "inputTranscription": ["nor", "this"],
        "modelTurn": {"parts": [{"inlineData": "bogus"}, "junk"]},
        "turnComplete": True,
    }}
    assert parse_server_message(payload) == [TURN_COMPLETE]
    assert parse_server_message({"serverContent": {"inputTranscription": {"text": 42}}}) == []
    assert parse_server_message({"serverContent": {"modelTurn": "oops"}}) == []
    assert parse_server_message({"serverContent": {"modelTurn": {"parts": "oops"}}}) == []


# ======================================================================
# Test Group 2: Setup payload
# ======================================================================

@test("Setup requests audio, voice, persona and both transcriptions")
def test_setup_message():
    config = SessionConfig(voice="Puck", system_instruction="Be kind.")
    setup = build_setup_message(config, model="test-model")["setup"]
    assert setup["model"] == "models/test-model"
    assert setup["generationConfig"]["responseModalities"] == ["AUDIO"]
    voice = setup["generationConfig"]["speechConfig"]["voiceConfig"]["prebuiltVoiceConfig"]
    assert voice["voiceName"] == "Puck"
    assert setup["systemInstruction"]["parts"][0]["text"] == "Be kind."
    assert setup["inputAudioTranscription"] == {}
    assert setup["outputAudioTranscription"] == {}


@test("Transcription can be disabled per direction")
def test_setup_no_transcription():
    config = SessionConfig(transcribe_input=False, transcribe_output=False)
    setup = build_setup_message(config)["setup"]
    assert "inputAudioTranscription" not in setup
    assert "outputAudioTranscription" not in setup


# ======================================================================
# Run all tests
# ======================================================================

if __name__ == "__main__":
    print("=" * 60)
    print("Live Message Tests")
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
