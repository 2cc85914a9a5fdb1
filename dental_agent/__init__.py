"""Dental booking assistant: a chat receptionist for a multi-dentist clinic.

Architecture Overview
=====================

One patient message is one **turn**.  ``ChatEngine`` stores the message,
replays the recent conversation through a LangGraph tool-dispatch loop and
stores the reply.

1. **chatbot**: Claude with the clinic context in the system prompt and the
   scheduling tools bound.  It answers directly or requests tool calls.
2. **tools**: executes calls in order.  Availability questions are answered
   from the database (working days, hours, blocked periods, bookings); never
   from the model's memory.
3. **confirm**: after a terminal action (book, walk-in, cancel, reschedule)
   one last model call phrases the outcome and the turn ends.

Key Design Decisions
--------------------
- **Scheduling core**: plain services over SQLAlchemy.  Every write
  re-validates the slot inside its own transaction with the doctor row
  locked, so two chats cannot book the same slot.
- **Side effects**: Google Calendar events, SES emails and reminders run
  after commit on a worker pool; their failures are logged, never surfaced.
- **Memory**: chat history lives in the database, not in the graph.
- **Dual Interface**: FastAPI server (JSON and SSE) + CLI chat loop.

Package Structure
-----------------
- ``dental_agent/agent.py``: LangGraph StateGraph definition
- ``dental_agent/engine.py``: per-turn orchestration and quick replies
- ``dental_agent/config.py``: configuration from environment variables
- ``dental_agent/prompts.py``: system prompts and EN/NL templates
- ``dental_agent/models.py``, ``db.py``, ``storage.py``: persistence
- ``dental_agent/services/``: availability, booking, calendar, email, reminders
- ``dental_agent/tools/``: LangChain scheduling tools and dispatch
- ``dental_agent/api/``: FastAPI routes and Pydantic schemas
"""
