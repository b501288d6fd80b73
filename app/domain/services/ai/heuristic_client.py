"""
Heuristic AI Client - מימוש מקומי ודטרמיניסטי של משימות ה-AI

משמש בפיילוט ובבדיקות: התאמת מילות מפתח וביטויים רגולריים בלבד,
בלי רשת. אותו ממשק כמו הספק החיצוני, כך שהצנרת לא יודעת במי מדובר.
"""
from __future__ import annotations

import json
import re
from typing import Any

from app.domain.services.ai.base import (
    BaseAIClient,
    DraftRequest,
    Intent,
    IntentResult,
    LanguageResult,
    RelevanceReason,
    RelevanceResult,
    SummaryRequest,
)

RELEVANCE_THRESHOLD = 0.6

_SMALL_TALK_RE = re.compile(
    r"^(hi|hello|hey|ciao|salve|buongiorno|buonasera|thanks|thank you|grazie|grazie mille|"
    r"ok|okay|va bene|perfetto|bene|how are you|come stai|come va|bye|goodbye|arrivederci)[.!?\s]*$",
    re.IGNORECASE,
)

_SPAM_PATTERNS = [
    re.compile(r"\b(free|gratis|win|vinci|prize|premio|click here|clicca qui)\b", re.IGNORECASE),
    re.compile(r"\b(limited time|tempo limitato)\b", re.IGNORECASE),
]

_DOMAIN_KEYWORDS = (
    "prenot", "booking", "book", "reserv", "lesson", "lezion", "corso", "course",
    "sci", "ski", "snowboard", "instructor", "istruttore", "maestro",
    "schedule", "orario", "disponibil", "availability", "price", "prezzo",
    "cost", "cancel", "annulla", "disdic", "change", "cambia", "modifica",
    "reschedule", "sposta", "move", "meeting point", "punto d'incontro",
    "info", "informazioni", "quanto costa", "how much",
)

# סדר חשוב: ביטול ושינוי נבדקים לפני הזמנה חדשה
_INTENT_PATTERNS: list[tuple[Intent, float, list[re.Pattern]]] = [
    (Intent.CANCEL, 0.85, [
        re.compile(r"(cancel|annulla|disdici|disdire).*(prenot|booking|lesson|lezione|session)", re.IGNORECASE),
        re.compile(r"(non posso|non riesco|can't make|cannot make|can not make).*(prenot|booking|lesson|lezione|it)", re.IGNORECASE),
        re.compile(r"\b(rinuncio|cancel it|call it off)\b", re.IGNORECASE),
    ]),
    (Intent.RESCHEDULE, 0.85, [
        re.compile(r"(cambia|change|modifica|sposta|posticipa|anticipa).*(prenot|booking|lesson|lezione|data|orario|time)", re.IGNORECASE),
        re.compile(r"\b(reschedule|riprogramma|riprogrammare)\b", re.IGNORECASE),
        re.compile(r"(altro giorno|altra data|altro orario|another day|another time)", re.IGNORECASE),
        re.compile(r"(move|postpone|bring forward|push back).*(lesson|booking|session|class)", re.IGNORECASE),
    ]),
    (Intent.NEW_BOOKING, 0.8, [
        re.compile(r"(voglio|vorrei|posso|puoi).*(prenot|lezione)", re.IGNORECASE),
        re.compile(r"(want|would like|i'd like|like to).*(lesson|booking|session|class)", re.IGNORECASE),
        re.compile(r"\b(book|reserve)\b.*(lesson|session|class|instructor)", re.IGNORECASE),
        re.compile(r"\b(prenotare|prenotazione)\b", re.IGNORECASE),
    ]),
    (Intent.INFO_REQUEST, 0.75, [
        re.compile(r"(quanto costa|how much|prezzo|price|tariff|rates?|pricing)", re.IGNORECASE),
        re.compile(r"\b(info|informazioni|information|dettagli|details)\b", re.IGNORECASE),
        re.compile(r"(dove|where).*(sei|are you|meeting point|ritrovo)", re.IGNORECASE),
        re.compile(r"(do you).*(teach|offer|have).*(lesson|class|session|course)", re.IGNORECASE),
    ]),
]

_LANGUAGE_MARKERS = {
    "it": {"ciao", "grazie", "lezione", "domani", "vorrei", "buongiorno", "sono", "della", "per", "spostare", "posso", "il", "che"},
    "en": {"hello", "thanks", "lesson", "tomorrow", "would", "please", "the", "and", "move", "same", "can", "my", "to"},
    "de": {"hallo", "danke", "morgen", "bitte", "ich", "und", "unterricht", "stunde", "mit"},
    "fr": {"bonjour", "merci", "demain", "cours", "je", "et", "leçon", "avec", "pour"},
}

_DRAFT_TEMPLATES = {
    "it": {
        Intent.NEW_BOOKING: "Grazie per il messaggio{name}! Mi indichi il giorno che preferisci, quante persone e il livello, così verifico le possibilità?",
        Intent.INFO_REQUEST: "Grazie per la domanda{name}. Verifico i dettagli e ti rispondo a breve.",
        Intent.RESCHEDULE: "Grazie per il messaggio{name}. Quale lezione vorresti spostare e quale nuovo orario ti andrebbe meglio?",
        "reschedule_verified": "Grazie{name}, ho trovato la tua lezione e verifico lo spostamento a {window}{same_place}. Ti rispondo a breve.",
    },
    "en": {
        Intent.NEW_BOOKING: "Thanks for reaching out{name}! Could you share the day you prefer, how many people and their level, so I can check the options?",
        Intent.INFO_REQUEST: "Thanks for your question{name}. Let me check the details and get back to you shortly.",
        Intent.RESCHEDULE: "Thanks for the message{name}. Which lesson would you like to move, and what new time would suit you?",
        "reschedule_verified": "Thanks{name}, I found your lesson and I'm checking the move to {window}{same_place}. I'll get back to you shortly.",
    },
}


def _matched_keywords(text: str) -> int:
    return sum(1 for keyword in _DOMAIN_KEYWORDS if keyword in text)


def _match_intent(text: str) -> tuple[Intent, float] | None:
    for intent, confidence, patterns in _INTENT_PATTERNS:
        if any(pattern.search(text) for pattern in patterns):
            return intent, confidence
    return None


class HeuristicAIClient(BaseAIClient):
    """Deterministic keyword/regex implementation of every AI task"""

    def __init__(self, default_language: str = "it") -> None:
        self._default_language = default_language

    @property
    def provider_name(self) -> str:
        return "heuristic"

    @property
    def model_name(self) -> str:
        return "heuristic-v1"

    async def classify_relevance(self, text: str, context: dict[str, Any]) -> RelevanceResult:
        normalized = (text or "").lower().strip()
        if not normalized or _SMALL_TALK_RE.match(normalized):
            return RelevanceResult(False, 0.95, RelevanceReason.SMALL_TALK)
        if any(pattern.search(normalized) for pattern in _SPAM_PATTERNS):
            return RelevanceResult(False, 0.9, RelevanceReason.SPAM)

        score = 0.35 * _matched_keywords(normalized)
        if _match_intent(normalized):
            score += 0.5
        confidence = round(min(0.95, score), 2)
        if confidence < RELEVANCE_THRESHOLD:
            return RelevanceResult(False, confidence, RelevanceReason.OUT_OF_DOMAIN)
        return RelevanceResult(True, confidence)

    async def classify_intent(self, text: str, context: dict[str, Any]) -> IntentResult:
        normalized = (text or "").lower().strip()
        matched = _match_intent(normalized)
        if matched:
            return IntentResult(*matched)
        # fallback: מילת הזמנה כללית מעל סף הטיוטה, אחרת בקשת מידע בביטחון נמוך
        if re.search(r"(prenot|booking|lesson|lezione|session|class)", normalized):
            return IntentResult(Intent.NEW_BOOKING, 0.76)
        if re.search(r"(rate|price|cost|info|how much|quanto)", normalized):
            return IntentResult(Intent.INFO_REQUEST, 0.76)
        return IntentResult(Intent.INFO_REQUEST, 0.6)

    async def detect_language(self, text: str) -> LanguageResult:
        words = set(re.findall(r"[a-zàèéìòùäöüßç']+", (text or "").lower()))
        scores = {lang: len(words & markers) for lang, markers in _LANGUAGE_MARKERS.items()}
        best = max(scores, key=lambda lang: scores[lang])
        if scores[best] == 0:
            return LanguageResult(self._default_language, 0.3)
        return LanguageResult(best, round(min(0.95, 0.5 + 0.1 * scores[best]), 2))

    async def summarize(self, request: SummaryRequest) -> str:
        inbound = [m["text"] for m in request.recent_messages if m.get("direction") == "inbound" and m.get("text")]
        previous = request.previous_summary_json or {}
        facts = list(previous.get("facts_collected", []))
        for key, value in sorted(request.structured_context.items()):
            if value not in (None, "", [], {}):
                fact = f"{key}: {value}"
                if fact not in facts:
                    facts.append(fact)

        latest = inbound[-1] if inbound else ""
        prefix = f"{request.previous_summary} " if request.mode == "incremental_merge" and request.previous_summary else ""
        summary_text = f"{prefix}Customer wrote: {latest}".strip()

        stage = "booking_active" if request.booking_snapshot else "discovery"
        payload = {
            "summary_text": summary_text,
            "customer_intent": request.current_intent or previous.get("customer_intent") or "unknown",
            "facts_collected": facts,
            "facts_missing": [] if request.booking_snapshot else ["preferred_date", "participants", "level"],
            "constraints": list(previous.get("constraints", [])),
            "current_stage": stage,
            "confidence_band": "medium",
            "next_questions": [],
        }
        return json.dumps(payload, ensure_ascii=False)

    async def draft_reply(self, request: DraftRequest) -> str:
        templates = _DRAFT_TEMPLATES.get(request.language, _DRAFT_TEMPLATES["en"])
        name = f" {request.customer_name}" if request.customer_name else ""
        if request.intent == Intent.RESCHEDULE and request.reschedule_verified and request.reschedule_window:
            same_place = ""
            if request.same_meeting_point:
                same_place = " (stesso punto d'incontro)" if request.language == "it" else " (same meeting point)"
            return templates["reschedule_verified"].format(
                name=name, window=request.reschedule_window, same_place=same_place
            )
        template = templates.get(request.intent)
        if template is None:
            return ""
        return template.format(name=name)
