from __future__ import annotations

import re

_LINE_LEADING_SPEAKER_PATTERN = re.compile(r"^[ \t]*([A-Za-z][A-Za-z \t]*?)[ \t]*:", re.MULTILINE)
_BRACKETED_SPEAKER_PATTERN = re.compile(r"[\[(]([A-Za-z][A-Za-z \t]*)[\])]")
_SPEECH_VERB_SPEAKER_PATTERN = re.compile(
    r"\b([A-Z][A-Za-z]*(?:[ \t]+[A-Z][A-Za-z]*)*)[ \t]+"
    r"(?i:said|mentioned|stated|asked|replied|responded)\b",
)
_SPEAKER_PATTERNS = (
    _LINE_LEADING_SPEAKER_PATTERN,
    _BRACKETED_SPEAKER_PATTERN,
    _SPEECH_VERB_SPEAKER_PATTERN,
)
_REJECTED_SPEAKER_FRAGMENTS = ("meeting", "agenda", "action")


def extract_speaker_names(transcript: str) -> set[str]:
    """Collect candidate speaker names from a raw transcript.

    Three heuristics are applied to the full text and unioned: a line
    starting with ``Name:``, ``[Name]``/``(Name)`` tokens, and ``Name said``
    style phrases. The result is best effort and may contain capitalized
    words that are not people.
    """
    if not transcript:
        return set()

    speaker_names: set[str] = set()
    for pattern in _SPEAKER_PATTERNS:
        for match in pattern.finditer(transcript):
            name = match.group(1).strip()
            if _is_plausible_speaker_name(name):
                speaker_names.add(name)
    return speaker_names


def _is_plausible_speaker_name(name: str) -> bool:
    if len(name) <= 2:
        return False
    lowered_name = name.lower()
    if any(fragment in lowered_name for fragment in _REJECTED_SPEAKER_FRAGMENTS):
        return False
    return not name.isdigit()
