"""Typed inbound messages from the live transport.

The server sends loosely shaped JSON; parse_server_message() turns one payload
into an ordered list of tagged messages so the session dispatches on the tag
instead of probing optional fields.
"""

from dataclasses import dataclass
from enum import Enum, auto


class MessageKind(Enum):
    AUDIO_CHUNK = auto()          # Inline synthesized audio (base64 PCM16)
    TRANSCRIPT_FRAGMENT = auto()  # Partial transcript text for one speaker
    TURN_COMPLETE = auto()        # Model finished its turn
    INTERRUPTED = auto()          # User barged in over model audio
    ERROR = auto()                # Server-side error report


class Speaker(str, Enum):
    USER = "user"
    MODEL = "model"


@dataclass(frozen=True)
class InboundMessage:
    kind: MessageKind
    data: str = ""
    speaker: Speaker | None = None


def audio_chunk(data: str) -> InboundMessage:
    return InboundMessage(MessageKind.AUDIO_CHUNK, data=data)


def transcript_fragment(speaker: Speaker, text: str) -> InboundMessage:
    return InboundMessage(MessageKind.TRANSCRIPT_FRAGMENT, data=text, speaker=speaker)


TURN_COMPLETE = InboundMessage(MessageKind.TURN_COMPLETE)
INTERRUPTED = InboundMessage(MessageKind.INTERRUPTED)


def server_error(text: str) -> InboundMessage:
    return InboundMessage(MessageKind.ERROR, data=text)


def _text(transcription) -> str:
    """Text of a transcription object, or "" when absent or malformed."""
    if not isinstance(transcription, dict):
        return ""
    text = transcription.get("text")
    return text if isinstance(text, str) else ""


def parse_server_message(data: dict) -> list[InboundMessage]:
    """Split one server payload into tagged messages.

    Order within a payload: transcripts, turn complete, audio, interruption.
    A turn-complete payload therefore finalizes the transcripts it carries.
    """
    if not isinstance(data, dict):
        return []

    messages = []

    if "error" in data:
        error = data["error"]
        if isinstance(error, dict):
            error = error.get("message") or str(error)
        messages.append(server_error(str(error)))

    content = data.get("serverContent")
    if not isinstance(content, dict):
        return messages

    output_text = _text(content.get("outputTranscription"))
    input_text = _text(content.get("inputTranscription"))
    if output_text:
        messages.append(transcript_fragment(Speaker.MODEL, output_text))
    if input_text:
        messages.append(transcript_fragment(Speaker.USER, input_text))

    if content.get("turnComplete"):
        messages.append(TURN_COMPLETE)

    model_turn = content.get("modelTurn")
    parts = model_turn.get("parts") if isinstance(model_turn, dict) else None
    for part in parts if isinstance(parts, list) else []:
        inline = part.get("inlineData") if isinstance(part, dict) else None
        if isinstance(inline, dict) and inline.get("data"):
            messages.append(audio_chunk(inline["data"]))

    if content.get("interrupted"):
        messages.append(INTERRUPTED)

    return messages
