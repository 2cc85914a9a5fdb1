"""Clickable reply buttons for the chat UI.

A cheap classifier model labels the assistant's last reply with one of
``CATEGORIES``; the buttons themselves are rendered from live clinic data.
Buttons are a convenience only: any failure yields an empty list and the
patient can still type.
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from langchain_anthropic import ChatAnthropic
from langchain_core.messages import HumanMessage

from dental_agent.config import ANTHROPIC_API_KEY, CLASSIFIER_MODEL_NAME
from dental_agent.prompts import get_templates
from dental_agent.services.metrics import metrics

logger = logging.getLogger(__name__)

CATEGORIES = (
    "main_menu",
    "pick_doctor",
    "pick_service",
    "pick_date",
    "pick_time",
    "yes_no",
    "new_returning",
    "post_completion",
    "none",
)

# Static button sets the model may also request through suggest_quick_replies
STATIC_SETS = ("main_menu", "yes_no", "confirm_cancel", "new_returning", "post_completion")

DATE_BUTTONS = 5
DATE_SEARCH_DAYS = 14
MAX_TIME_BUTTONS = 10

_TIME_RE = re.compile(r"\b(\d{1,2}:\d{2})\b")

CLASSIFIER_PROMPT = (
    "You label a dental receptionist's chat message so the app can show "
    "the right buttons. Reply with exactly one label:\n\n"
    "- main_menu: greets or asks how it can help\n"
    "- pick_doctor: asks which dentist the patient wants\n"
    "- pick_service: asks which treatment or service is needed\n"
    "- pick_date: asks which day the patient wants to come\n"
    "- pick_time: offers or asks for a time slot\n"
    "- yes_no: asks the patient to confirm details\n"
    "- new_returning: asks whether the patient is new or returning\n"
    "- post_completion: a booking, cancellation or change was just completed\n"
    "- none: anything else, or a free-text answer is needed (name, phone, email)\n\n"
    "Message:\n{reply}\n\n"
    "Label:"
)


@dataclass
class ClinicData:
    """Live data the buttons are rendered from."""

    today: date
    services: list[str] = field(default_factory=list)
    doctors: list[dict[str, Any]] = field(default_factory=list)
    working_days: list[int] = field(default_factory=list)


def _buttons(pairs: list[tuple[str, str]]) -> list[dict[str, str]]:
    return [{"label": label, "value": value} for label, value in pairs]


def extract_times(text: str) -> list[str]:
    """Distinct ``HH:MM`` times between 06:00 and 22:59, in order of mention."""
    found: list[str] = []
    for match in _TIME_RE.findall(text or ""):
        hour, minute = (int(p) for p in match.split(":"))
        normalized = f"{hour:02d}:{minute:02d}"
        if 6 <= hour <= 22 and minute < 60 and normalized not in found:
            found.append(normalized)
    return found[:MAX_TIME_BUTTONS]


def date_buttons(language: str, data: ClinicData) -> list[dict[str, str]]:
    """Next working days with Today/Tomorrow labels."""
    t = get_templates(language)
    working = set(data.working_days)
    buttons = []
    for offset in range(DATE_SEARCH_DAYS):
        day = data.today + timedelta(days=offset)
        if day.weekday() not in working:
            continue
        name = t["day_names"][day.weekday()]
        if offset == 0:
            label = f"{t['today']} ({name})"
        elif offset == 1:
            label = f"{t['tomorrow']} ({name})"
        else:
            label = f"{name} {day.isoformat()}"
        buttons.append({"label": label, "value": day.isoformat()})
        if len(buttons) >= DATE_BUTTONS:
            break
    return buttons


def render_buttons(
    category: str,
    language: str,
    data: ClinicData,
    reply_text: str = "",
    time_slots: list[str] | None = None,
) -> list[dict[str, str]]:
    """Turn a category into concrete buttons.  Unknown categories give ``[]``."""
    t = get_templates(language)
    if category in STATIC_SETS:
        return _buttons(t["buttons"][category])
    if category == "pick_service":
        return [
            {"label": s, "value": t["service_value"].format(service=s)} for s in data.services
        ]
    if category == "pick_doctor":
        return [
            {
                "label": t["doctor_label"].format(name=d["name"], specialty=d["specialty"]),
                "value": t["doctor_value"].format(name=d["name"]),
            }
            for d in data.doctors
        ]
    if category == "pick_date":
        return date_buttons(language, data)
    if category == "pick_time":
        times = [s for s in (time_slots or []) if s][:MAX_TIME_BUTTONS] or extract_times(reply_text)
        if times:
            return [{"label": s, "value": s} for s in times]
        return date_buttons(language, data)
    return []


class QuickReplyClassifier:
    """Single low-temperature call that picks a button category."""

    def __init__(self, llm: Any | None = None):
        self._llm = llm or ChatAnthropic(
            model=CLASSIFIER_MODEL_NAME,
            api_key=ANTHROPIC_API_KEY,
            temperature=0.0,
            max_tokens=10,
        )

    def classify(self, reply_text: str) -> str | None:
        """Return a category, or ``None`` when the call fails."""
        if not (reply_text or "").strip():
            return "none"
        t0 = time.perf_counter()
        try:
            response = self._llm.invoke([HumanMessage(content=CLASSIFIER_PROMPT.format(reply=reply_text))])
        except Exception as exc:
            metrics.record_failure(
                "anthropic", "quick_reply_classify",
                error_type=type(exc).__name__, latency_ms=(time.perf_counter() - t0) * 1000,
            )
            logger.warning("Quick-reply classifier failed: %s", exc)
            return None
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("anthropic", "quick_reply_classify", latency_ms=elapsed)

        raw = response.content if isinstance(response.content, str) else str(response.content)
        label = raw.strip().lower()
        category = next((c for c in CATEGORIES if c in label), "none")
        logger.debug("Classifier (%s) -> %s (raw: %r, %.0fms)", CLASSIFIER_MODEL_NAME, category, raw, elapsed)
        return category

    def suggest(self, reply_text: str, language: str, data: ClinicData) -> list[dict[str, str]]:
        category = self.classify(reply_text)
        if category is None:
            return []
        try:
            return render_buttons(category, language, data, reply_text=reply_text)
        except Exception:
            logger.exception("Rendering %s buttons failed", category)
            return []
