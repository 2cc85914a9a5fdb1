"""Patient emails sent through AWS SES.

When ``SES_REGION`` or ``SES_FROM_EMAIL`` is unset the notifier is disabled
and every ``send_*`` call returns ``False`` without touching the network.
SES failures raise ``EmailDeliveryError``; callers in the side-effect layer
log them and carry on.
"""

from __future__ import annotations

import html
import logging
from dataclasses import dataclass

from botocore.exceptions import BotoCoreError, ClientError

from dental_agent.config import SES_FROM_EMAIL, SES_REGION
from dental_agent.errors import EmailDeliveryError
from dental_agent.services.metrics import metrics

logger = logging.getLogger(__name__)


@dataclass
class AppointmentEmail:
    """Everything an appointment email needs, already in clinic-local terms."""

    patient_email: str
    patient_name: str
    doctor_name: str
    when: str
    service: str
    reference_code: str
    clinic_name: str = "Dental Clinic"
    duration: int = 30
    previous_when: str | None = None


def _row(label: str, value: str) -> str:
    return (
        f'<tr><td style="padding:6px 0;font-size:13px;color:#6b7280;">{html.escape(label)}</td>'
        f'<td style="padding:6px 0;font-size:14px;color:#111827;">{html.escape(value)}</td></tr>'
    )


def render_email(heading: str, intro: str, email: AppointmentEmail, footer: str) -> str:
    rows = [
        _row("Reference", email.reference_code),
        _row("Doctor", email.doctor_name),
        _row("When", email.when),
        _row("Service", email.service),
    ]
    if email.previous_when:
        rows.insert(2, _row("Previously", email.previous_when))
    return (
        f'<div style="font-family:Arial,sans-serif;max-width:560px;margin:0 auto;">'
        f"<h2>{html.escape(email.clinic_name)}</h2>"
        f"<h3>{html.escape(heading)}</h3>"
        f"<p>Dear {html.escape(email.patient_name)},</p>"
        f"<p>{html.escape(intro)}</p>"
        f'<table cellpadding="0" cellspacing="0">{"".join(rows)}</table>'
        f'<p style="font-size:13px;color:#6b7280;">{html.escape(footer)}</p>'
        f"</div>"
    )


class EmailNotifier:
    """Sends appointment emails; ``client`` is an injectable boto3 SES client."""

    def __init__(
        self,
        client=None,
        *,
        from_email: str | None = None,
        region: str | None = None,
    ):
        self._from_email = from_email if from_email is not None else SES_FROM_EMAIL
        self._region = region if region is not None else SES_REGION
        self._client = client

    @property
    def enabled(self) -> bool:
        return bool(self._from_email and (self._client is not None or self._region))

    def _get_client(self):
        if self._client is None:
            import boto3

            self._client = boto3.client("ses", region_name=self._region)
        return self._client

    def _send(self, to: str, subject: str, html_body: str) -> bool:
        if not self.enabled:
            logger.info("SES not configured; skipping email to %s", to)
            return False
        try:
            with metrics.track("ses", "send_email"):
                self._get_client().send_email(
                    Source=self._from_email,
                    Destination={"ToAddresses": [to]},
                    Message={
                        "Subject": {"Data": subject, "Charset": "UTF-8"},
                        "Body": {"Html": {"Data": html_body, "Charset": "UTF-8"}},
                    },
                )
        except (BotoCoreError, ClientError) as exc:
            raise EmailDeliveryError(f"SES rejected email to {to}: {exc}") from exc
        logger.info("Email sent to %s (%s)", to, subject)
        return True

    # ── Appointment lifecycle emails ─────────────────────────────────

    def send_confirmation(self, email: AppointmentEmail) -> bool:
        body = render_email(
            "Appointment Confirmed",
            "Your appointment has been booked.",
            email,
            "Keep your reference number handy if you need to change or cancel.",
        )
        return self._send(email.patient_email, f"Appointment Confirmed: {email.when}", body)

    def send_rescheduled(self, email: AppointmentEmail) -> bool:
        body = render_email(
            "Appointment Rescheduled",
            "Your appointment has been moved to a new time.",
            email,
            "Keep your reference number handy if you need to change or cancel.",
        )
        return self._send(email.patient_email, f"Appointment Rescheduled: New {email.when}", body)

    def send_cancelled(self, email: AppointmentEmail) -> bool:
        body = render_email(
            "Appointment Cancelled",
            "Your appointment has been cancelled.",
            email,
            "If you'd like to book a new appointment, please use our chat or contact the clinic.",
        )
        return self._send(email.patient_email, f"Appointment Cancelled: {email.reference_code}", body)

    def send_reminder(self, email: AppointmentEmail) -> bool:
        body = render_email(
            "Appointment Reminder",
            "This is a reminder of your upcoming appointment.",
            email,
            "Need to change it? Use your reference number in our chat.",
        )
        return self._send(email.patient_email, f"Reminder: {email.when}", body)
