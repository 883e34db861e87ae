"""
Voices, style presets, languages and prompt construction.

The speech model is steered by natural language: every request text is
wrapped in a prompt carrying a language directive, an optional style
instruction and, for continuity, the tail of the previous segment.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional


@dataclass(frozen=True)
class Voice:
    name: str
    gender: str
    description: str


VOICES: List[Voice] = [
    Voice("Puck", "Male", "Upbeat & Playful"),
    Voice("Kore", "Female", "Firm & Clear"),
    Voice("Charon", "Male", "Deep & Authoritative"),
    Voice("Fenrir", "Male", "Fast & Energetic"),
    Voice("Aoede", "Female", "Warm & Breezy"),
]

DEFAULT_VOICE = "Puck"

STYLE_PRESETS: Dict[str, str] = {
    "Storyteller": "Read this slowly and dramatically, emphasizing the emotions:",
    "News Anchor": "Read this in a professional, neutral, and fast-paced broadcast tone:",
    "Excited": "Say this with extreme excitement and high energy, almost shouting with joy:",
    "Whisper": "Whisper this very quietly, intimately, and secretively:",
}

LANGUAGE_DIRECTIVES: Dict[str, str] = {
    "en": "Read the following text in English.",
    "hi": (
        "Strictly speak the following text in Hindi. If the text is written in Devanagari, "
        "read it naturally. If the text is written in Latin script (Hinglish), pronounce it "
        "with a proper, native Hindi accent."
    ),
    "hinglish": (
        "The following text is in Hinglish (a conversational blend of Hindi and English). "
        "Speak it with a natural, urban Indian accent. Pronounce Hindi words authentically "
        "(even if written in Latin script) and English words with a slight Indian inflection, "
        "just like a native bilingual speaker from India."
    ),
}

LANGUAGE_LABELS: Dict[str, str] = {
    "en": "English",
    "hi": "Hindi",
    "hinglish": "Hinglish",
}


def voice_names() -> List[str]:
    return [v.name for v in VOICES]


def find_voice(name: str) -> Optional[Voice]:
    """Case-insensitive voice lookup."""
    for v in VOICES:
        if v.name.lower() == name.lower():
            return v
    return None


def resolve_style(style: Optional[str]) -> str:
    """
    Style instruction for a preset label or free text.

    Preset labels match case-insensitively; anything else is used
    verbatim as a custom instruction.
    """
    if not style:
        return ""
    for label, instruction in STYLE_PRESETS.items():
        if label.lower() == style.strip().lower():
            return instruction
    return style.strip()


def build_prompt(
    text: str,
    language: str = "en",
    style: str = "",
    prior_context: str = "",
) -> str:
    """
    Full prompt for one segment.

    Unknown language codes fall back to the English directive.
    """
    directive = LANGUAGE_DIRECTIVES.get(language, LANGUAGE_DIRECTIVES["en"])
    parts = [directive]
    if style:
        parts.append(f"Style instruction: {style}")
    head = "\n".join(parts)

    if prior_context:
        head += (
            "\n\nFor continuity only, this is how the previous passage ended "
            f"(do not read it aloud):\n{prior_context}"
        )

    return f"{head}\n\nText to speak:\n{text}"
