"""Scheduling tools exposed to the language model.

Each tool is a LangChain ``@tool`` with a pydantic ``args_schema``; the
per-turn ``TurnContext`` reaches it through ``config["configurable"]``, so
the model never sees it.  ``execute_tool`` is the single entry point used
by the graph: it invokes one tool and always returns a JSON-serialisable
payload, never an exception.

Terminal tools (``TERMINAL_TOOLS``) commit a change and end the turn.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from langchain_core.runnables import RunnableConfig
from langchain_core.tools import BaseTool, tool
from pydantic import BaseModel, Field, ValidationError
from sqlalchemy.orm import Session, sessionmaker

from dental_agent.db import session_scope
from dental_agent.errors import SchedulingError, ToolExecutionError
from dental_agent.services.availability import AvailabilityCalculator
from dental_agent.services.booking import BookingService, parse_slot
from dental_agent.services.quick_replies import ClinicData, render_buttons
from dental_agent.storage import Storage

logger = logging.getLogger(__name__)


@dataclass
class TurnContext:
    """Per-turn collaborators handed to every tool."""

    session_factory: sessionmaker[Session]
    booking: BookingService
    language: str = "en"
    source: str = "chat"
    clinic: ClinicData | None = None
    now_fn: Callable[[], datetime] | None = None


def turn_config(ctx: TurnContext, **configurable: Any) -> RunnableConfig:
    return {"configurable": {"context": ctx, **configurable}}


def turn_context(config: RunnableConfig) -> TurnContext:
    return config["configurable"]["context"]


# ── Argument schemas ─────────────────────────────────────────────────


class CheckAvailabilityArgs(BaseModel):
    doctor_id: int = Field(description="Dentist ID from the clinic info")
    date: str = Field(description="Day to check, YYYY-MM-DD")


class LookupAppointmentArgs(BaseModel):
    reference_code: str = Field(description="Booking reference, e.g. APT-AB12")
    phone: str = Field(description="Phone number used for the booking (at least the last 6 digits)")


class LookupPatientByEmailArgs(BaseModel):
    email: str = Field(description="Email address the patient gave")


class FindEmergencySlotArgs(BaseModel):
    pass


class SuggestQuickRepliesArgs(BaseModel):
    category: str = Field(
        description=(
            "One of: main_menu, pick_service, pick_doctor, pick_date, pick_time, "
            "yes_no, confirm_cancel, new_returning, post_completion"
        ),
    )
    time_slots: list[str] | None = Field(default=None, description="HH:MM times for pick_time")


class BookAppointmentArgs(BaseModel):
    patient_name: str = Field(description="Patient's REAL full name; never a placeholder")
    patient_phone: str = Field(description="Patient's REAL phone number; never a placeholder")
    patient_email: str | None = Field(default=None, description="Optional email address")
    service: str = Field(description="Service from the clinic catalogue")
    doctor_id: int = Field(description="Dentist ID")
    date: str = Field(description="YYYY-MM-DD")
    time: str = Field(description="HH:MM, clinic local time")
    notes: str | None = Field(default=None, description="Optional notes for the dentist")


class BookWalkInArgs(BaseModel):
    patient_name: str = Field(description="Patient's REAL full name; never a placeholder")
    patient_phone: str = Field(description="Patient's REAL phone number; never a placeholder")
    patient_email: str | None = Field(default=None, description="Optional email address")
    service: str = Field(default="General Checkup", description="Service from the clinic catalogue")
    date: str = Field(description="YYYY-MM-DD")
    period: str = Field(description="morning, afternoon or evening")


class CancelAppointmentArgs(BaseModel):
    reference_code: str = Field(description="Booking reference, e.g. APT-AB12")
    phone: str = Field(description="Phone number used for the booking")


class RescheduleAppointmentArgs(BaseModel):
    reference_code: str = Field(description="Booking reference, e.g. APT-AB12")
    phone: str = Field(description="Phone number used for the booking")
    new_date: str = Field(description="New day, YYYY-MM-DD")
    new_time: str = Field(description="New time, HH:MM clinic local time")


# ── Tools ────────────────────────────────────────────────────────────


@tool("check_availability", args_schema=CheckAvailabilityArgs)
def check_availability(doctor_id: int, date: str, config: RunnableConfig) -> dict[str, Any]:
    """List free time slots and blocked periods for one dentist on one day.
    ALWAYS call this before telling a patient when a dentist is available."""
    ctx = turn_context(config)
    day, _ = parse_slot(date)
    with session_scope(ctx.session_factory) as session:
        storage = Storage(session)
        doctor = storage.get_doctor(doctor_id)
        if doctor is None or not doctor.is_active:
            raise ToolExecutionError(f"No active dentist with ID {doctor_id}.")
        calc = AvailabilityCalculator.from_storage(storage, ctx.now_fn)
        result = calc.check_availability(doctor.id, day)

    if not result.working_day:
        summary = f"The clinic is closed on {day:%A} {day.isoformat()}."
    else:
        summary = ""
        if result.blocked_periods:
            summary = (
                f"Dr. {doctor.name} is NOT available during: "
                f"{', '.join(result.blocked_periods)} on {day.isoformat()}. "
            )
        if result.available:
            summary += f"Available time slots: {', '.join(result.slots)}."
        else:
            summary += f"No available slots on {day.isoformat()}."
    return {
        "doctor_id": doctor.id,
        "doctor_name": doctor.name,
        "date": day.isoformat(),
        "working_day": result.working_day,
        "available_slots": result.slots,
        "blocked_periods": result.blocked_periods,
        "summary": summary,
    }


@tool("lookup_appointment", args_schema=LookupAppointmentArgs)
def lookup_appointment(reference_code: str, phone: str, config: RunnableConfig) -> dict[str, Any]:
    """Find and verify an existing appointment by reference number and phone number."""
    return turn_context(config).booking.lookup_appointment(reference_code, phone)


@tool("lookup_patient_by_email", args_schema=LookupPatientByEmailArgs)
def lookup_patient_by_email(email: str, config: RunnableConfig) -> dict[str, Any]:
    """Look up a returning patient's details by email address."""
    return turn_context(config).booking.lookup_patient_by_email(email)


@tool("find_emergency_slot", args_schema=FindEmergencySlotArgs)
def find_emergency_slot(config: RunnableConfig) -> dict[str, Any]:
    """Find the earliest free slot today across all dentists for an urgent case."""
    ctx = turn_context(config)
    with session_scope(ctx.session_factory) as session:
        calc = AvailabilityCalculator.from_storage(Storage(session), ctx.now_fn)
        return calc.find_emergency_slot().to_dict()


@tool("suggest_quick_replies", args_schema=SuggestQuickRepliesArgs)
def suggest_quick_replies(
    category: str, config: RunnableConfig, time_slots: list[str] | None = None,
) -> dict[str, Any]:
    """Choose the clickable buttons shown under your next message."""
    ctx = turn_context(config)
    if ctx.clinic is None:
        return {"buttons": []}
    buttons = render_buttons(category, ctx.language, ctx.clinic, time_slots=time_slots)
    if not buttons:
        raise ToolExecutionError(f"Unknown quick-reply category {category!r}.")
    return {"buttons": buttons}


@tool("book_appointment", args_schema=BookAppointmentArgs)
def book_appointment(
    patient_name: str,
    patient_phone: str,
    service: str,
    doctor_id: int,
    date: str,
    time: str,
    config: RunnableConfig,
    patient_email: str | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    """Book an appointment ONLY after collecting the patient's real full name, real phone
    number, service, dentist, date and time, and after the patient confirmed.
    NEVER use placeholder values."""
    ctx = turn_context(config)
    return ctx.booking.book_appointment(
        patient_name=patient_name,
        patient_phone=patient_phone,
        patient_email=patient_email,
        service=service,
        doctor_id=doctor_id,
        day=date,
        time=time,
        notes=notes,
        source=ctx.source,
    ).to_dict()


@tool("book_walk_in", args_schema=BookWalkInArgs)
def book_walk_in(
    patient_name: str,
    patient_phone: str,
    date: str,
    period: str,
    config: RunnableConfig,
    patient_email: str | None = None,
    service: str = "General Checkup",
) -> dict[str, Any]:
    """Register a walk-in visit for a day and period (morning/afternoon/evening)
    without a specific dentist or time."""
    ctx = turn_context(config)
    return ctx.booking.book_walk_in(
        patient_name=patient_name,
        patient_phone=patient_phone,
        patient_email=patient_email,
        service=service,
        day=date,
        period=period,
        source=ctx.source,
    ).to_dict()


@tool("cancel_appointment", args_schema=CancelAppointmentArgs)
def cancel_appointment(reference_code: str, phone: str, config: RunnableConfig) -> dict[str, Any]:
    """Cancel a verified appointment after the patient confirmed."""
    return turn_context(config).booking.cancel_appointment(reference_code, phone)


@tool("reschedule_appointment", args_schema=RescheduleAppointmentArgs)
def reschedule_appointment(
    reference_code: str, phone: str, new_date: str, new_time: str, config: RunnableConfig,
) -> dict[str, Any]:
    """Move a verified appointment to a new date and time after the patient confirmed."""
    return turn_context(config).booking.reschedule_appointment(
        reference_code, phone, new_date, new_time,
    ).to_dict()


# ── Registry ─────────────────────────────────────────────────────────


ALL_TOOLS: list[BaseTool] = [
    check_availability,
    lookup_appointment,
    lookup_patient_by_email,
    find_emergency_slot,
    suggest_quick_replies,
    book_appointment,
    book_walk_in,
    cancel_appointment,
    reschedule_appointment,
]

TOOLS_BY_NAME: dict[str, BaseTool] = {t.name: t for t in ALL_TOOLS}
TERMINAL_TOOLS = frozenset({"book_appointment", "book_walk_in", "cancel_appointment", "reschedule_appointment"})


def is_terminal(name: str) -> bool:
    return name in TERMINAL_TOOLS


def _invalid_arguments(name: str, reason: Any) -> dict[str, Any]:
    logger.warning("Malformed arguments for %s: %s", name, reason)
    return ToolExecutionError(
        f"Invalid arguments for {name}: {reason}. Check the required fields and try again."
    ).to_payload()


def execute_tool(name: str, raw_args: Any, config: RunnableConfig) -> tuple[dict[str, Any], bool]:
    """Invoke one tool call.  Returns ``(payload, succeeded)``.

    Unknown tools, undecodable JSON, schema mismatches and scheduling
    errors all become ``{"success": False, ...}`` payloads.
    """
    selected = TOOLS_BY_NAME.get(name)
    if selected is None:
        logger.warning("Model called unknown tool %r", name)
        return ToolExecutionError(f"Unknown tool: {name}").to_payload(), False

    try:
        args = json.loads(raw_args) if isinstance(raw_args, str) and raw_args.strip() else raw_args
    except json.JSONDecodeError as exc:
        return _invalid_arguments(name, exc), False
    args = args or {}
    if not isinstance(args, dict):
        return _invalid_arguments(name, f"expected an object, got {type(args).__name__}"), False

    try:
        result = selected.invoke(args, config)
    except ValidationError as exc:
        return _invalid_arguments(name, exc), False
    except SchedulingError as exc:
        logger.info("Tool %s failed: %s (%s)", name, exc.code, exc.message)
        return exc.to_payload(), False
    except Exception:
        logger.exception("Tool %s raised unexpectedly", name)
        return ToolExecutionError(
            f"{name} failed unexpectedly. Apologise and offer to try again."
        ).to_payload(), False

    payload = {"success": True, **result}
    logger.debug("Tool %s succeeded", name)
    return payload, True
