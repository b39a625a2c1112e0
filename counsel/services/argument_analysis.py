"""Rule-based argument checks shared by strategy generation and opponent simulation."""

from dataclasses import dataclass
from typing import List, Sequence
import re

from ..models.schemas import KnowledgeReference

_WORD_RE = re.compile(r"[A-Za-z']+")


@dataclass(frozen=True)
class Weakness:
    """A detected weak spot in an argument."""
    kind: str
    description: str
    attack: str
    rebuttal: str


@dataclass(frozen=True)
class _Rule:
    kind: str
    markers: frozenset
    description: str
    attack: str
    rebuttal: str
    on_match: bool = True


ABSOLUTE_TERMS = frozenset(
    ["always", "never", "clearly", "obviously", "everyone", "nobody", "certainly", "undeniably", "completely"]
)
HEDGE_TERMS = frozenset(["maybe", "probably", "might", "perhaps", "think", "believe", "feel", "seems", "guess"])
EMOTIONAL_TERMS = frozenset(
    ["unfair", "outrageous", "ridiculous", "disgusting", "terrible", "lying", "liar", "hate", "furious", "insane"]
)
EVIDENCE_TERMS = frozenset(
    [
        "because", "evidence", "record", "records", "exhibit", "receipt", "receipts", "email", "emails",
        "letter", "letters", "contract", "agreement", "witness", "witnesses", "photo", "photos",
        "document", "documents", "invoice", "report", "notice", "statute", "section", "clause",
    ]
)

# Rules run in this order; the order of detected weaknesses follows it.
_RULES = [
    _Rule(
        kind="absolute_language",
        markers=ABSOLUTE_TERMS,
        description="Absolute wording such as 'always' or 'never' can be defeated by a single counterexample.",
        attack="your own account uses absolutes, and one counterexample is enough to show it overstates the facts",
        rebuttal="Concede the rare exception, then show the pattern still holds for the events that matter here.",
    ),
    _Rule(
        kind="unsupported_claim",
        markers=EVIDENCE_TERMS,
        description="The claim is not tied to any evidence; expect a demand for documents, dates or witnesses.",
        attack="not a single document, date or witness has been offered, so this is assertion rather than proof",
        rebuttal="Name the specific document, date or witness that proves the point and offer to produce it.",
        on_match=False,
    ),
    _Rule(
        kind="emotional_appeal",
        markers=EMOTIONAL_TERMS,
        description="Emotional language can be portrayed as bias instead of fact.",
        attack="the strong feelings on display are understandable, but feelings are not facts and cannot carry the burden of proof",
        rebuttal="Acknowledge the frustration briefly, then restate the same point as a neutral, verifiable fact.",
    ),
    _Rule(
        kind="hedged_claim",
        markers=HEDGE_TERMS,
        description="Hedged wording ('probably', 'I think') signals uncertainty the other side will exploit.",
        attack="even the other side only says this 'probably' happened, which is speculation, not a finding",
        rebuttal="Replace the hedge with what is actually known, and separate facts from inferences explicitly.",
    ),
]

BREVITY = Weakness(
    kind="insufficient_detail",
    description="The position is too brief to show how the facts satisfy each element of the claim.",
    attack="the argument skips the elements it must prove and asks the decision-maker to fill the gaps",
    rebuttal="Walk through each element in order and attach one fact to each.",
)

GENERAL = Weakness(
    kind="burden_of_proof",
    description="The other side will test whether each fact is proven rather than assumed.",
    attack="every one of these facts is disputed, and the party making the claim has to prove them",
    rebuttal="Identify which facts are undisputed and anchor the argument on them first.",
)

MIN_DETAILED_WORDS = 12


def words(text: str) -> List[str]:
    return [w.lower() for w in _WORD_RE.findall(text)]


def detect_weaknesses(text: str) -> List[Weakness]:
    """Return weaknesses found in ``text`` in a fixed rule order."""
    tokens = words(text)
    token_set = set(tokens)
    has_digits = any(ch.isdigit() for ch in text)

    found = []
    for rule in _RULES:
        matched = bool(rule.markers & token_set)
        if rule.kind == "unsupported_claim":
            matched = matched or has_digits
        if matched == rule.on_match:
            found.append(Weakness(rule.kind, rule.description, rule.attack, rule.rebuttal))

    if len(tokens) < MIN_DETAILED_WORDS:
        found.append(BREVITY)
    return found


def shorten(text: str, limit: int = 160) -> str:
    text = " ".join(text.split())
    if len(text) <= limit:
        return text
    return text[:limit].rsplit(" ", 1)[0] + "..."


def first_sentence(text: str) -> str:
    text = " ".join(text.split())
    match = re.search(r"(.+?[.!?])(\s|$)", text)
    return match.group(1) if match else text


def as_points(value) -> List[str]:
    """Coerce an LLM field into a list of non-empty strings."""
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    points = []
    for item in value:
        if isinstance(item, str) and item.strip():
            points.append(item.strip())
    return points


def format_references(references: Sequence[KnowledgeReference]) -> str:
    """Render knowledge excerpts for a prompt."""
    if not references:
        return "No uploaded material matched this question."
    lines = []
    for i, ref in enumerate(references, start=1):
        lines.append(f"[{i}] {ref.source}: {ref.excerpt}")
    return "\n".join(lines)
