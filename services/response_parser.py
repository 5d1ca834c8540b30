import re
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional

# (section, emoji marker, heading text); a line starting with either opens the section
SECTION_MARKERS = [
    ("follow_up", "❓", "follow-up questions"),
    ("related", "🔗", "related topics"),
    ("immediate", "⚡", "immediate actions"),
    ("short_term", "📅", "next steps"),
    ("long_term", "🗓", "long-term"),
]

# advice header; closes whatever section was open
ADVICE_MARKER = "🌱"

_BULLET_RE = re.compile(r"^(?:[-•*]|\d+[.)])\s*")


@dataclass
class ParsedResponse:
    follow_up_questions: Optional[List[str]] = None
    related_topics: Optional[List[str]] = None
    recommendations: Optional[Dict[str, List[str]]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _section_for(line: str) -> Optional[str]:
    stripped = line.lstrip("#*• ")
    lowered = stripped.lower()
    for section, marker, heading in SECTION_MARKERS:
        if stripped.startswith(marker) or lowered.startswith(heading):
            return section
    return None


def parse_response(text: str) -> ParsedResponse:
    sections: Dict[str, List[str]] = {name: [] for name, _, _ in SECTION_MARKERS}
    current = None

    for raw in (text or "").splitlines():
        line = raw.strip()
        if not line:
            continue

        header = _section_for(line)
        if header:
            current = header
            continue
        if line.startswith(ADVICE_MARKER):
            current = None
            continue
        if current is None:
            continue

        item = _BULLET_RE.sub("", line).strip()
        if item:
            sections[current].append(item)

    recommendations = None
    if sections["immediate"] or sections["short_term"] or sections["long_term"]:
        recommendations = {
            "immediate": sections["immediate"],
            "short_term": sections["short_term"],
            "long_term": sections["long_term"],
        }

    return ParsedResponse(
        follow_up_questions=sections["follow_up"] or None,
        related_topics=sections["related"] or None,
        recommendations=recommendations,
    )
