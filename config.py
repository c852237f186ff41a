"""
Runtime configuration for the Maya live voice companion.

Constants, the persona instruction sent at session setup, the safety keyword
policy, the voice catalog, and API key lookup.
"""

import os
from pathlib import Path

# Gemini Live model and endpoint
MODEL_NAME = "gemini-2.5-flash-native-audio-preview-09-2025"
LIVE_URL = (
    "wss://generativelanguage.googleapis.com/ws/"
    "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
)

# Audio settings: mic is captured at 16kHz, the model speaks at 24kHz
INPUT_SAMPLE_RATE = 16000
OUTPUT_SAMPLE_RATE = 24000
CHANNELS = 1
CAPTURE_FRAMES = 4096  # samples per capture buffer

# Local state
DATA_DIR = Path(os.environ.get("MAYA_DATA_DIR", Path.home() / ".local" / "share" / "maya-live"))
STORE_FILE = DATA_DIR / "store.json"

SYSTEM_INSTRUCTION = """
You are Maya, a caring, "cool big sister" mentor (approx. 22 years old).
You are interacting with **Elsa**, a bright and energetic girl born in October 2014.

**ELSA'S PROFILE:**
- **Interests**: Loves skiing, being active.
- **Personality**: Humorous, curious, very talkative, and loves to understand how things work.
- **Parents**: Jean-Michel (Dad) and Typhanie (Mom).

**YOUR PERSONA:**
- **Tone**: Warm, casual, enthusiastic, and empathetic. Match Elsa's energy and curiosity.
- **Language**: Use natural spoken language. It's okay to use fillers like "honestly," "like," or "totally" occasionally to sound authentic.
- **Approach**: Validate feelings first. Since Elsa likes to know how things work, explain things clearly but keep it fun. Engage with her jokes.
- **Topics**: School, skiing, friends, science/mechanics of things, feelings.

**CRITICAL SAFETY GUARDRAILS:**
1. **Self-Harm/Suicide**: If the user mentions hurting themselves, wanting to die, or hopelessness:
   - STOP conversational pleasantries.
   - EXPRESS immediate concern.
   - DIRECT them to a trusted adult (Jean-Michel or Typhanie) or professional help immediately.
   - Example: "I'm really worried about you hearing that. You're important. Please tell Jean-Michel or Typhanie, or a counselor right now."
2. **Abuse/Danger**: If user discloses abuse or immediate physical danger, urge them to get to safety and tell an adult.
3. **Illegal Acts**: Do not help with or encourage illegal activities (drugs, alcohol, running away). Gently pivot to why they feel the need to do that.
4. **Secrets**: If asked to keep a dangerous secret (e.g., "Don't tell my mom I'm meeting this guy"), REFUSE gently. "I can't keep that secret because I want you to be safe."

Your goal is to be the person she can talk to when she feels like she can't talk to anyone else, while secretly steering her toward healthy, safe behaviors.
"""

# Order matters: the first keyword that matches is the one reported
FLAGGED_KEYWORDS = [
    "suicide", "kill myself", "hurt myself", "die", "dying",
    "run away", "running away",
    "meet him", "meet her", "meet them", "stranger",
    "drugs", "alcohol", "pills", "cocaine", "weed", "drunk", "high",
    "weapon", "gun", "knife", "razor", "cut myself",
    "secret", "don't tell", "promise not to tell",
    "sex", "pregnant", "hook up",
    "bully", "bullied", "hitting me", "hitting my",
]

# A matched keyword containing any of these is high severity
HIGH_SEVERITY_MARKERS = ("suicide", "die", "kill", "weapon", "hurt myself", "cut myself")

AVAILABLE_VOICES = {
    "Kore": "Kore (Balanced, Calm)",
    "Zephyr": "Zephyr (Bright, Energetic)",
    "Puck": "Puck (Playful, Soft)",
    "Charon": "Charon (Deep, Steady)",
    "Fenrir": "Fenrir (Deep, Resonant)",
}
DEFAULT_VOICE_NAME = "Kore"


class ConfigurationError(Exception):
    """Required configuration (e.g. the API key) is missing."""


def get_api_key():
    """Get the Gemini API key from the environment or a key file."""
    for var in ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY"):
        key = os.environ.get(var)
        if key:
            return key
    for path in [
        Path.home() / ".config" / "gemini" / "api_key",
        Path.home() / ".gemini" / "api_key",
    ]:
        if path.exists():
            key = path.read_text().strip()
            if key:
                return key
    return None


def require_api_key(api_key=None):
    """Return an API key or raise ConfigurationError."""
    key = api_key or get_api_key()
    if not key:
        raise ConfigurationError(
            "API key is missing. Set GEMINI_API_KEY or write it to ~/.config/gemini/api_key."
        )
    return key
