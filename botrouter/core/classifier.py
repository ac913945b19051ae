# botrouter/core/classifier.py
"""
Rule-based intent classifier.

Pattern families are tested in a fixed priority order and the first match
wins: command > greeting > farewell > question > help > contextual keywords
> unknown. Confidence values are constants per category, not learned.
"""
from __future__ import annotations

import re
from typing import Callable, Dict

from botrouter.core.domain import (
    Category,
    Classification,
    DetailedClassification,
    Sentiment,
)

CONFIDENCE: Dict[Category, float] = {
    Category.COMMAND: 0.9,
    Category.GREETING: 0.85,
    Category.FAREWELL: 0.85,
    Category.QUESTION: 0.8,
    Category.HELP: 0.8,
    Category.CONTEXTUAL: 0.7,
    Category.UNKNOWN: 0.5,
}

GREETING_RE = re.compile(
    r"^(hola|hi|hello|buenas|hey|saludos|que tal|buenos días|buenas tardes|buenas noches)\b",
    re.IGNORECASE,
)
FAREWELL_RE = re.compile(
    r"^(adiós|adios|bye\s*bye|bye|goodbye|chao|chau|ciao|hasta luego|hasta la vista|"
    r"nos vemos|me voy|hasta pronto|que tengas buen día|que tengas buena noche|"
    r"que descanses|hasta mañana|see you)(\s|$|!|\.|,)"
    r"|^hasta(\s|$|!|\.|,)(?!.*que)",
    re.IGNORECASE,
)
QUESTION_RE = re.compile(
    r"^(qué|que|como|cómo|cuál|cual|cuándo|cuando|dónde|donde|por qué|porque|quién|quien)\s|\?$",
    re.IGNORECASE,
)
HELP_RE = re.compile(
    r"^(help|ayuda|auxilio|socorro|no sé|no se|no entiendo|no comprendo|comandos|opciones)"
    r"|necesito\s*(ayuda|help)",
    re.IGNORECASE,
)

# Contextual vocabulary, grouped for diagnostics. Extraction order follows
# the group order below.
KEYWORD_GROUPS: Dict[str, tuple[str, ...]] = {
    "informational": (
        "explicar", "explicame", "dime", "cuéntame", "información", "informacion",
        "detalles", "más", "mas", "ejemplo", "ejemplos", "tutorial",
    ),
    "emotional": (
        "triste", "aburrido", "aburrida", "aburro", "deprimido", "deprimida",
        "solo", "sola", "soledad", "cansado", "cansada", "estresado", "estresada",
        "ansioso", "ansiosa", "feliz", "contento", "contenta", "alegre",
        "motivado", "motivada",
    ),
    "gratitude": ("gracias", "thank", "thanks", "agradezco", "agradecimiento"),
    "weather": (
        "hacer", "tiempo", "clima", "lluvia", "sol", "nublado", "calor",
        "frio", "frío", "temperatura",
    ),
    "social": (
        "charlar", "conversar", "hablar", "platicar", "contar", "chiste", "broma",
        "gracioso", "divertido", "entretenido", "actividad", "sugerencia",
        "recomendación", "consejo",
    ),
}
VOCABULARY: tuple[str, ...] = tuple(w for group in KEYWORD_GROUPS.values() for w in group)

POSITIVE_WORDS = frozenset({"feliz", "contento", "alegre", "motivado", "gracias", "bien", "excelente", "genial"})
NEGATIVE_WORDS = frozenset({"triste", "aburrido", "deprimido", "solo", "cansado", "estresado", "ansioso", "mal"})

_WORD_RE = re.compile(r"\w+", re.UNICODE)


def _words(text: str) -> set[str]:
    return set(_WORD_RE.findall(text))


class MessageClassifier:
    """
    Classify message text into a ``Category``.

    Stateless apart from configuration, safe to share between handlers.
    """

    def __init__(self, prefix: str = "/", max_keywords: int = 10):
        if not prefix:
            raise ValueError("Command prefix must not be empty")
        self.prefix = prefix
        self.max_keywords = max_keywords
        self._families: list[tuple[Category, Callable[[str], bool]]] = [
            (Category.COMMAND, self.is_command),
            (Category.GREETING, lambda t: bool(GREETING_RE.search(t))),
            (Category.FAREWELL, lambda t: bool(FAREWELL_RE.search(t))),
            (Category.QUESTION, lambda t: bool(QUESTION_RE.search(t))),
            (Category.HELP, lambda t: bool(HELP_RE.search(t))),
        ]

    @staticmethod
    def normalize(text: str | None) -> str:
        return (text or "").strip().lower()

    def is_command(self, text: str) -> bool:
        return text.startswith(self.prefix)

    def extract_keywords(self, text: str) -> tuple[str, ...]:
        """Contextual vocabulary words present in ``text`` (whole words only)."""
        words = _words(text)
        found = [w for w in VOCABULARY if w in words]
        return tuple(found[: self.max_keywords])

    @staticmethod
    def analyze_sentiment(text: str) -> Sentiment:
        words = _words(text)
        positive = len(POSITIVE_WORDS & words)
        negative = len(NEGATIVE_WORDS & words)
        if positive > negative:
            return Sentiment.POSITIVE
        if negative > positive:
            return Sentiment.NEGATIVE
        return Sentiment.NEUTRAL

    def classify(self, text: str | None) -> Classification:
        normalized = self.normalize(text)
        if not normalized:
            return Classification(category=Category.UNKNOWN, confidence=0.0)

        keywords = self.extract_keywords(normalized)
        sentiment = self.analyze_sentiment(normalized)

        for category, matches in self._families:
            if matches(normalized):
                return Classification(category, CONFIDENCE[category], keywords, sentiment)

        if keywords:
            return Classification(Category.CONTEXTUAL, CONFIDENCE[Category.CONTEXTUAL], keywords, sentiment)
        return Classification(Category.UNKNOWN, CONFIDENCE[Category.UNKNOWN], keywords, sentiment)

    def classify_detailed(self, text: str | None) -> DetailedClassification:
        """
        Same primary result as ``classify`` plus every family that would
        have matched, for diagnostics.
        """
        primary = self.classify(text)
        normalized = self.normalize(text)
        if not normalized:
            return DetailedClassification(primary=primary)

        matched = [category for category, matches in self._families if matches(normalized)]
        if primary.keywords:
            matched.append(Category.CONTEXTUAL)

        words = _words(normalized)
        groups = {
            name: tuple(w for w in vocab if w in words)
            for name, vocab in KEYWORD_GROUPS.items()
        }
        return DetailedClassification(
            primary=primary,
            matched_categories=tuple(matched),
            keyword_groups={k: v for k, v in groups.items() if v},
        )
