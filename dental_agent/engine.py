"""Transport-agnostic chat entrypoint.

``ChatEngine.process_message`` is what every channel calls (JSON API, SSE
stream, CLI).  It persists the patient's message, replays the recent
conversation through the tool-dispatch graph, stores the reply and picks
quick-reply buttons.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage
from sqlalchemy.orm import Session, sessionmaker

from dental_agent.agent import TurnOutcome, run_agent_turn
from dental_agent.config import HISTORY_LIMIT
from dental_agent.db import session_scope
from dental_agent.models import ChatMessage
from dental_agent.prompts import get_system_prompt, get_welcome_message
from dental_agent.services.booking import BookingService
from dental_agent.services.clock import ClinicClock
from dental_agent.services.quick_replies import ClinicData, QuickReplyClassifier, render_buttons
from dental_agent.storage import Storage
from dental_agent.tools.scheduling import TurnContext

logger = logging.getLogger(__name__)

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"


@dataclass
class ChatTurnResult:
    text: str
    quick_replies: list[dict[str, str]] = field(default_factory=list)
    booking: dict[str, Any] | None = None


@dataclass
class SessionStart:
    session_id: str
    text: str
    quick_replies: list[dict[str, str]] = field(default_factory=list)


def to_langchain_history(rows: list[ChatMessage]) -> list[BaseMessage]:
    """Stored rows → chat messages; leading assistant turns are dropped."""
    history: list[BaseMessage] = []
    for row in rows:
        if row.role == ROLE_USER:
            history.append(HumanMessage(content=row.content))
        elif row.role == ROLE_ASSISTANT and history:
            history.append(AIMessage(content=row.content))
    return history


class ChatEngine:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        graph,
        booking: BookingService,
        classifier: QuickReplyClassifier | None = None,
        now_fn: Callable[[], datetime] | None = None,
        history_limit: int = HISTORY_LIMIT,
    ):
        self._session_factory = session_factory
        self._graph = graph
        self._booking = booking
        self._classifier = classifier
        self._now_fn = now_fn
        self._history_limit = history_limit

    # ── Clinic context ───────────────────────────────────────────────

    def _clinic_context(self, storage: Storage, language: str) -> tuple[str, ClinicData]:
        settings = storage.get_settings()
        today = ClinicClock(settings.timezone, self._now_fn).today()
        doctors = [
            {"id": d.id, "name": d.name, "specialty": d.specialty}
            for d in storage.list_active_doctors()
        ]
        services = list(settings.services or [])
        prompt = get_system_prompt(
            language,
            clinic_name=settings.clinic_name,
            today=today,
            timezone=settings.timezone,
            services=services,
            doctors=doctors,
            open_time=settings.open_time,
            close_time=settings.close_time,
            working_days=list(settings.working_days or []),
            duration=settings.appointment_duration,
        )
        data = ClinicData(
            today=today,
            services=services,
            doctors=doctors,
            working_days=list(settings.working_days or []),
        )
        return prompt, data

    # ── Sessions ─────────────────────────────────────────────────────

    def start_session(self, language: str = "en", source: str = "chat") -> SessionStart:
        """Open a conversation and store the welcome message."""
        session_id = uuid.uuid4().hex
        with session_scope(self._session_factory) as session:
            storage = Storage(session)
            storage.ensure_chat_session(session_id, language, source)
            _, data = self._clinic_context(storage, language)
            welcome = get_welcome_message(language, storage.get_settings().clinic_name)
            storage.add_chat_message(session_id, ROLE_ASSISTANT, welcome)
        logger.info("Started chat session %s (%s, %s)", session_id, language, source)
        return SessionStart(
            session_id=session_id,
            text=welcome,
            quick_replies=render_buttons("main_menu", language, data),
        )

    def process_message(
        self,
        session_id: str,
        message: str,
        language: str = "en",
        source: str = "chat",
    ) -> ChatTurnResult:
        with session_scope(self._session_factory) as session:
            storage = Storage(session)
            storage.ensure_chat_session(session_id, language, source)
            storage.add_chat_message(session_id, ROLE_USER, message)
            rows = storage.recent_chat_messages(session_id, self._history_limit)
            system_prompt, data = self._clinic_context(storage, language)
            history = to_langchain_history(rows)

        ctx = TurnContext(
            session_factory=self._session_factory,
            booking=self._booking,
            language=language,
            source=source,
            clinic=data,
            now_fn=self._now_fn,
        )
        outcome = run_agent_turn(self._graph, history, ctx, system_prompt)
        logger.debug(
            "Turn done for %s: %d round-trips, last tool=%s, terminal=%s",
            session_id, outcome.iterations, outcome.last_tool, outcome.terminal_action,
        )

        with session_scope(self._session_factory) as session:
            Storage(session).add_chat_message(session_id, ROLE_ASSISTANT, outcome.text)

        return ChatTurnResult(
            text=outcome.text,
            quick_replies=self._quick_replies(outcome, language, data),
            booking=outcome.booking,
        )

    def _quick_replies(self, outcome: TurnOutcome, language: str, data: ClinicData) -> list[dict[str, str]]:
        """Tool-suggested buttons win, then post-completion, then the classifier."""
        if outcome.suggested_replies:
            return outcome.suggested_replies
        if outcome.terminal_action and outcome.action_ok:
            return render_buttons("post_completion", language, data)
        if self._classifier is None:
            return []
        try:
            return self._classifier.suggest(outcome.text, language, data)
        except Exception:
            logger.exception("Quick replies failed; continuing without buttons")
            return []
