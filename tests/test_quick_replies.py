"""Tests for quick-reply rendering and the classifier."""

from __future__ import annotations

from datetime import date
from unittest.mock import MagicMock

from langchain_core.messages import AIMessage

from dental_agent.services.quick_replies import (
    MAX_TIME_BUTTONS,
    ClinicData,
    QuickReplyClassifier,
    date_buttons,
    extract_times,
    render_buttons,
)

DATA = ClinicData(
    today=date(2025, 3, 7),  # Friday
    services=["General Checkup", "Teeth Whitening"],
    doctors=[{"id": 1, "name": "Sarah de Vries", "specialty": "General Dentistry"}],
    working_days=[0, 1, 2, 3, 4],
)


def _classifier(reply: str | Exception) -> QuickReplyClassifier:
    llm = MagicMock()
    if isinstance(reply, Exception):
        llm.invoke.side_effect = reply
    else:
        llm.invoke.return_value = AIMessage(content=reply)
    return QuickReplyClassifier(llm=llm)


class TestExtractTimes:
    def test_normalises_and_deduplicates(self):
        text = "I have 9:00, 09:30 and 9:00 again, or 14:30."
        assert extract_times(text) == ["09:00", "09:30", "14:30"]

    def test_ignores_implausible_hours(self):
        assert extract_times("Ratio 3:15 or 23:30") == []

    def test_caps_the_number_of_buttons(self):
        text = " ".join(f"{h}:00" for h in range(6, 22))
        assert len(extract_times(text)) == MAX_TIME_BUTTONS


class TestRenderButtons:
    def test_dates_skip_weekend_and_label_today(self):
        buttons = date_buttons("en", DATA)
        assert buttons[0] == {"label": "Today (Friday)", "value": "2025-03-07"}
        assert buttons[1]["value"] == "2025-03-10"
        assert len(buttons) == 5

    def test_dutch_labels(self):
        assert date_buttons("nl", DATA)[0]["label"].startswith("Vandaag")

    def test_services_and_doctors_come_from_clinic_data(self):
        assert [b["label"] for b in render_buttons("pick_service", "en", DATA)] == DATA.services
        assert render_buttons("pick_doctor", "en", DATA)[0]["label"] == "Dr. Sarah de Vries (General Dentistry)"

    def test_pick_time_reads_times_from_reply(self):
        buttons = render_buttons("pick_time", "en", DATA, reply_text="Free at 10:00 or 10:30.")
        assert [b["value"] for b in buttons] == ["10:00", "10:30"]

    def test_pick_time_without_times_falls_back_to_dates(self):
        buttons = render_buttons("pick_time", "en", DATA, reply_text="When suits you?")
        assert buttons[0]["value"] == "2025-03-07"

    def test_none_and_unknown(self):
        assert render_buttons("none", "en", DATA) == []
        assert render_buttons("nonsense", "en", DATA) == []


class TestClassifier:
    def test_label_is_parsed(self):
        assert _classifier(" yes_no\n").classify("Shall I book this?") == "yes_no"

    def test_unrecognised_label_is_none(self):
        assert _classifier("banana").classify("Hmm") == "none"

    def test_empty_reply_skips_the_model(self):
        classifier = _classifier("yes_no")
        assert classifier.classify("   ") == "none"
        classifier._llm.invoke.assert_not_called()

    def test_failure_returns_no_buttons(self):
        assert _classifier(RuntimeError("overloaded")).suggest("Which day?", "en", DATA) == []

    def test_suggest_renders_category(self):
        buttons = _classifier("new_returning").suggest("Have you visited before?", "en", DATA)
        assert [b["label"] for b in buttons] == ["New patient", "Returning patient"]
