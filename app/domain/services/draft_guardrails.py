"""
Draft Guardrails - בדיקות איכות ובטיחות לטיוטות AI

פונקציה טהורה ודטרמיניסטית: טיוטה עם התחייבות, תאריך/שעה/מחיר
מומצאים או טון אסרטיבי נחסמת. כל טיוטה שעוברת מקבלת הערת
"לבדיקה אנושית". מחירים נחסמים תמיד, גם אחרי אימות שינוי.
"""
import re
from dataclasses import dataclass, field
from typing import Optional

from app.domain.services.ai import Intent

DISCLAIMER = "Suggested reply for human review."
MAX_SENTENCES = 2
MAX_SENTENCES_VERIFIED = 3
DEFAULT_MAX_CHARS = 600

_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
_PLACEHOLDER_RE = re.compile(r"\[[^\]]*\]|\{[^}]*\}|<[^>]+>|\bTODO\b|\bXXX\b|lorem ipsum", re.IGNORECASE)

_MONTHS_IT = "gennaio|febbraio|marzo|aprile|maggio|giugno|luglio|agosto|settembre|ottobre|novembre|dicembre"
_MONTHS_EN = "january|february|march|april|may|june|july|august|september|october|november|december"

_RULES = {
    "it": {
        "NO_COMMITMENT": [
            r"ti\s+confermo|\bconfermo\b|è\s+disponibile|\bdisponibile\b|il\s+prezzo|prezzo\s+è|prenotazione\s+effettuata|\bprenotato\b|\bconfermato\b",
            r"posso\s+confermare|posso\s+prenotare|posso\s+garantire",
        ],
        "NO_ASSUMPTIONS_DATE": [
            rf"\b(domani|dopodomani|(lun|mar|mer|gio|ven)edì|sabato|domenica|{_MONTHS_IT})\b",
        ],
        "NO_ASSUMPTIONS_TIME": [
            r"\b(alle|dalle)\s+\d{1,2}",
            r"\d{1,2}:\d{2}",
        ],
        "TONE_CHECK": [
            r"puoi\s+prenotare|puoi\s+confermare|puoi\s+fare|devi\s+prenotare|devi\s+fare",
            r"è\s+fatto|è\s+pronto|è\s+confermato",
        ],
        "NO_ASSUMPTIONS_PRICE": [
            r"\d+\s*(euro|€)|prezzo\s+è\s+\d+|costa\s+\d+",
        ],
    },
    "en": {
        "NO_COMMITMENT": [
            r"\bi\s+confirm\b|\bconfirmed\b|is\s+available|\bavailable\b|the\s+price|price\s+is|booking\s+confirmed|\bbooked\b",
            r"can\s+confirm|can\s+book|can\s+guarantee",
        ],
        "NO_ASSUMPTIONS_DATE": [
            rf"\b(tomorrow|monday|tuesday|wednesday|thursday|friday|saturday|sunday|{_MONTHS_EN})\b",
        ],
        "NO_ASSUMPTIONS_TIME": [
            r"\b(at|from)\s+\d{1,2}\b",
            r"\d{1,2}:\d{2}",
        ],
        "TONE_CHECK": [
            r"you\s+can\s+book|you\s+can\s+confirm|you\s+can\s+do|you\s+must\s+book|you\s+must\s+do",
            r"it\s+is\s+done|it\s+is\s+ready|it\s+is\s+available|it\s+is\s+confirmed",
        ],
        "NO_ASSUMPTIONS_PRICE": [
            r"\d+\s*(euro|dollars?|€|\$)|price\s+is\s+\d+|costs?\s+\d+",
        ],
    },
}

# כללים שמדולגים כשהשינוי אומת מול נתוני מערכת
_BYPASSABLE = ("NO_COMMITMENT", "NO_ASSUMPTIONS_DATE", "NO_ASSUMPTIONS_TIME", "TONE_CHECK")

_COMPILED = {
    lang: {rule: [re.compile(p, re.IGNORECASE) for p in patterns] for rule, patterns in rules.items()}
    for lang, rules in _RULES.items()
}

_REASONS = {
    "NO_COMMITMENT": "Draft contains commitment language",
    "NO_ASSUMPTIONS_DATE": "Draft contains a specific date",
    "NO_ASSUMPTIONS_TIME": "Draft contains a specific time",
    "TONE_CHECK": "Draft uses assertive tone",
    "NO_ASSUMPTIONS_PRICE": "Draft contains a specific price",
}


@dataclass(frozen=True)
class DraftViolation:
    rule: str
    reason: str
    blocking: bool


@dataclass
class GuardrailResult:
    safe_text: Optional[str]
    violations: list[DraftViolation] = field(default_factory=list)
    was_truncated: bool = False

    @property
    def blocked(self) -> bool:
        return self.safe_text is None

    @property
    def blocking_rules(self) -> list[str]:
        return [v.rule for v in self.violations if v.blocking]


def _first_sentences(text: str, limit: int) -> tuple[str, bool]:
    parts = [p for p in _SENTENCE_SPLIT_RE.split(text) if p]
    if len(parts) <= limit:
        return text, False
    return " ".join(parts[:limit]).strip(), True


def sanitize_draft(
    text: Optional[str],
    intent: Optional[Intent],
    language: str = "en",
    reschedule_verified: bool = False,
    max_chars: int = DEFAULT_MAX_CHARS,
) -> GuardrailResult:
    """
    Apply the quality rules to a raw draft.

    Returns ``safe_text=None`` when any blocking rule fires. ``reschedule_verified``
    is set only by the orchestrator after a match against a real booking.
    """
    text = (text or "").strip()
    result = GuardrailResult(safe_text=None)
    if not text:
        result.violations.append(DraftViolation("EMPTY_DRAFT", "Draft text is empty", True))
        return result
    if _PLACEHOLDER_RE.search(text):
        result.violations.append(DraftViolation("PLACEHOLDER", "Draft contains unfilled placeholder", True))
        return result

    limit = MAX_SENTENCES_VERIFIED if reschedule_verified else MAX_SENTENCES
    text, result.was_truncated = _first_sentences(text, limit)
    if result.was_truncated:
        result.violations.append(
            DraftViolation("MAX_SENTENCES", f"Draft truncated to {limit} sentences", False)
        )

    rules = _COMPILED["it"] if language == "it" else _COMPILED["en"]
    if reschedule_verified and intent == Intent.RESCHEDULE:
        result.violations.append(
            DraftViolation("RESCHEDULE_VERIFIED_BYPASS", "Commitment, date, time and tone rules bypassed", False)
        )
        active = ("NO_ASSUMPTIONS_PRICE",)
    else:
        active = _BYPASSABLE + ("NO_ASSUMPTIONS_PRICE",)

    for rule in active:
        if any(pattern.search(text) for pattern in rules[rule]):
            result.violations.append(DraftViolation(rule, _REASONS[rule], True))

    if result.blocking_rules:
        return result

    if DISCLAIMER.lower() not in text.lower():
        text = f"{DISCLAIMER}\n\n{text}"
        result.violations.append(DraftViolation("MANDATORY_DISCLAIMER", "Disclaimer added", False))

    if len(text) > max_chars:
        text = text[:max_chars].rstrip()
        result.was_truncated = True
        result.violations.append(
            DraftViolation("MAX_CHARS", f"Draft truncated to {max_chars} characters", False)
        )

    result.safe_text = text
    return result
