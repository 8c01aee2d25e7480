from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

# "max" is the wake word; "hey" is optional and a trailing comma/period is tolerated.
_WAKE = r"\b(?:hey\s+)?max[,.]?\s*"

# Order matters: longer phrases are stripped before the bare "hey max" start phrase.
COMMAND_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("attach_plan", re.compile(_WAKE + r"here\s+are\s+the\s+plans?\b", re.IGNORECASE)),
    ("take_photo", re.compile(_WAKE + r"take\s+a\s+photo\b", re.IGNORECASE)),
    ("new_room", re.compile(_WAKE + r"new\s+room\s*[-–—]?\s*(\w[\w\s]*)", re.IGNORECASE)),
    ("flag", re.compile(_WAKE + r"flag\s+that\b", re.IGNORECASE)),
    # the tag runs to the next period; an unterminated tag swallows the rest of the transcript
    ("tag_job", re.compile(_WAKE + r"this\s+is\s+(.*?)(?:\.|$)", re.IGNORECASE)),
    ("stop", re.compile(_WAKE + r"stop\b", re.IGNORECASE)),
    ("plan_query", re.compile(_WAKE + r"what'?s?\s+on\s+the\s+plans?\b", re.IGNORECASE)),
    ("acknowledge", re.compile(r"\bgot\s+it\s+max\b", re.IGNORECASE)),
    ("start", re.compile(r"\bhey\s+max\b", re.IGNORECASE)),
]

_MULTI_WS_RE = re.compile(r"\s{2,}")


@dataclass
class VoiceCommand:
    type: str
    raw: str
    capture: Optional[str]
    index: int  # character offset in the raw transcript


@dataclass
class ExtractResult:
    cleaned: str
    commands: list[VoiceCommand]


@dataclass
class CommandMeta:
    room_markers: list[dict[str, Any]] = field(default_factory=list)
    flags: list[int] = field(default_factory=list)
    job_tag: Optional[str] = None
    plan_attach_requested: bool = False
    photo_requested: bool = False
    plan_query_requested: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _strip(text: str) -> str:
    cleaned = text
    for _, pattern in COMMAND_PATTERNS:
        cleaned = pattern.sub(" ", cleaned)
    return _MULTI_WS_RE.sub(" ", cleaned).strip()


def strip_commands(text: str) -> ExtractResult:
    """
    Find every control phrase in a raw transcript and remove it.

    Matches are recorded against the raw text (offsets stay stable); the
    cleaned text has each matched span replaced by a single space and is then
    whitespace-collapsed. A transcript without control phrases comes back as-is.
    """
    raw = text or ""
    commands: list[VoiceCommand] = []

    for name, pattern in COMMAND_PATTERNS:
        for m in pattern.finditer(raw):
            capture = m.group(1) if pattern.groups else None
            commands.append(VoiceCommand(type=name, raw=m.group(0), capture=capture, index=m.start()))

    if not commands:
        return ExtractResult(cleaned=raw, commands=[])

    commands.sort(key=lambda c: c.index)
    return ExtractResult(cleaned=_strip(raw), commands=commands)


def parse_commands(commands: list[VoiceCommand]) -> CommandMeta:
    """
    Fold ordered matches into session metadata.

    Room markers accumulate; the job tag keeps the first match.
    """
    meta = CommandMeta()
    for cmd in sorted(commands, key=lambda c: c.index):
        if cmd.type == "new_room":
            name = (cmd.capture or "").strip() or "unnamed"
            meta.room_markers.append({"name": name, "index": cmd.index})
        elif cmd.type == "flag":
            meta.flags.append(cmd.index)
        elif cmd.type == "tag_job":
            if meta.job_tag is None:
                meta.job_tag = (cmd.capture or "").strip() or None
        elif cmd.type == "attach_plan":
            meta.plan_attach_requested = True
        elif cmd.type == "take_photo":
            meta.photo_requested = True
        elif cmd.type == "plan_query":
            meta.plan_query_requested = True
    return meta


def flag_word_positions(raw: str, offsets: list[int]) -> list[int]:
    """Map raw-text flag offsets to word positions in the cleaned transcript."""
    return [len(_strip(raw[:off]).split()) for off in offsets]
