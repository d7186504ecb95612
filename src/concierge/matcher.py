"""
Person matching for caller transcripts.

Decides whether the caller is a delivery driver (carrier keyword present) or is
asking for a resident (fuzzy match of a single name token against the
directory).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import re
from typing import Iterable, List, Optional, Tuple, Union

import structlog

from src.concierge.residents import DeliveryPerson, Resident, stub_delivery_person

logger = structlog.get_logger(__name__)

_PUNCT_RE = re.compile(r"[^\w\s']")

DEFAULT_CARRIER_KEYWORDS: Tuple[str, ...] = ("amazon", "fedex", "ups")
DEFAULT_FILLER_WORDS: Tuple[str, ...] = ("thank", "you")
DEFAULT_MAX_DISTANCE = 2


class MatchKind(str, Enum):
    DELIVERY = "delivery"
    RESIDENT = "resident"


@dataclass(frozen=True)
class DeliveryMatch:
    delivery: DeliveryPerson
    kind: MatchKind = MatchKind.DELIVERY


@dataclass(frozen=True)
class ResidentMatch:
    """A resident lookup. `resident` is None when nobody was close enough."""

    resident: Optional[Resident]
    distance: Optional[int] = None
    kind: MatchKind = MatchKind.RESIDENT


MatchResult = Union[DeliveryMatch, ResidentMatch]


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance with unit insert/delete/substitute costs."""
    prev = list(range(len(b) + 1))
    for i in range(1, len(a) + 1):
        curr = [i] + [0] * len(b)
        for j in range(1, len(b) + 1):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            curr[j] = min(
                curr[j - 1] + 1,
                prev[j] + 1,
                prev[j - 1] + cost,
            )
        prev = curr
    return prev[len(b)]


def tokenize(text: str) -> List[str]:
    """Lower-case, strip punctuation, split on whitespace."""
    return _PUNCT_RE.sub("", (text or "").lower()).split()


class PersonMatcher:
    def __init__(
        self,
        residents: Iterable[Resident],
        *,
        carrier_keywords: Iterable[str] = DEFAULT_CARRIER_KEYWORDS,
        filler_words: Iterable[str] = DEFAULT_FILLER_WORDS,
        max_distance: int = DEFAULT_MAX_DISTANCE,
    ):
        self.residents: Tuple[Resident, ...] = tuple(residents)
        self.carrier_keywords = frozenset(k.lower() for k in carrier_keywords)
        self.filler_words = frozenset(w.lower() for w in filler_words)
        self.max_distance = max_distance

    def candidate_name(self, tokens: List[str]) -> str:
        """First token that isn't a filler word, or an empty string."""
        return next((t for t in tokens if t not in self.filler_words), "")

    def find_resident(self, transcript: str) -> ResidentMatch:
        name_word = self.candidate_name(tokenize(transcript))
        logger.debug("Extracted name word", name_word=name_word)

        best: Optional[Resident] = None
        best_distance: Optional[int] = None

        for resident in self.residents:
            for spelling in resident.spellings:
                distance = levenshtein_distance(name_word, spelling.lower())
                logger.debug("Match distance", spelling=spelling, distance=distance)
                # Strictly smaller only: first minimum in directory order wins ties.
                if best_distance is None or distance < best_distance:
                    best, best_distance = resident, distance

        logger.info(
            "Best resident match",
            name_word=name_word,
            resident=best.name if best else None,
            distance=best_distance,
        )

        if best is None or best_distance is None or best_distance > self.max_distance:
            return ResidentMatch(resident=None, distance=best_distance)
        return ResidentMatch(resident=best, distance=best_distance)

    def match(self, transcript: str) -> MatchResult:
        tokens = tokenize(transcript)

        carrier = next((t for t in tokens if t in self.carrier_keywords), None)
        if carrier:
            logger.warning(
                "Carrier keyword detected; delivery is not verified",
                carrier=carrier,
            )
            return DeliveryMatch(delivery=stub_delivery_person())

        return self.find_resident(transcript)
