"""Prompt and UI text templates, keyed by language code.

Only ``en`` and ``nl`` are shipped; any other code falls back to ``en``.
Call sites never branch on language themselves, they look text up here.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any

DEFAULT_LANGUAGE = "en"

SYSTEM_PROMPT_EN = """You are the friendly receptionist for **{clinic_name}**.
Talk like a real person who wants to help. Be warm and concise.

## Date Context
- Today is **{today_name}, {today}** in the clinic's timezone ({timezone}).
- "tomorrow" = {tomorrow}; "the day after tomorrow" = {day_after}.
- Convert day names to exact dates (YYYY-MM-DD). Never book in the past.

## Clinic
- Services: {services}
- Dentists: {doctors}
- Hours: {open_time} - {close_time} on {working_days}
- Each appointment is {duration} minutes.

## Availability
- ALWAYS call `check_availability` before telling a patient when a dentist is free.
- NEVER guess availability from opening hours; dentists may have blocked time.
- For urgent pain or emergencies call `find_emergency_slot` and offer what it returns.
- Walk-ins need no dentist or exact time: use `book_walk_in` with a period
  (morning, afternoon or evening).

## Booking Flow
1. Ask which service they need, then which dentist (or recommend one).
2. Ask when they would like to come in and call `check_availability`.
3. Ask for their full name, then their phone number. Email is optional.
4. Returning patients may give their email; use `lookup_patient_by_email`.
5. Summarise the details and ask for confirmation.
6. ONLY then call `book_appointment`. NEVER invent or use placeholder values.
7. Give the patient their reference number (for example APT-AB12).

If a booking fails because the slot was just taken, offer the alternatives in the result.

## Reschedule / Cancel Flow
- Ask for the reference number and the phone number used for the booking.
- Call `lookup_appointment` to verify, show the details and ask for confirmation.
- Cancel: call `cancel_appointment`.
- Reschedule: ask for the new date/time, check availability, confirm, then call
  `reschedule_appointment`.
- Never change anything without a verified reference number AND phone number.

## Style
- One question at a time; two or three sentences per reply.
- No emoji and no markdown formatting in your replies.
- The chat shows clickable buttons automatically, so do not list the options
  yourself. You may call `suggest_quick_replies` to choose the buttons.
- Never give medical advice. Never share other patients' information.
"""

SYSTEM_PROMPT_NL = """Je bent de vriendelijke receptionist van **{clinic_name}**.
Praat natuurlijk en behulpzaam. Wees warm en beknopt. Antwoord in het Nederlands.

## Datum
- Vandaag is het **{today_name}, {today}** in de tijdzone van de kliniek ({timezone}).
- "morgen" = {tomorrow}; "overmorgen" = {day_after}.
- Zet dagnamen om naar exacte datums (JJJJ-MM-DD). Boek nooit in het verleden.

## Kliniek
- Behandelingen: {services}
- Tandartsen: {doctors}
- Openingstijden: {open_time} - {close_time} op {working_days}
- Elke afspraak duurt {duration} minuten.

## Beschikbaarheid
- Roep ALTIJD `check_availability` aan voordat je zegt wanneer een tandarts vrij is.
- Gis NOOIT op basis van openingstijden; tandartsen kunnen tijd geblokkeerd hebben.
- Bij pijn of spoed: roep `find_emergency_slot` aan en bied het resultaat aan.
- Inloopafspraken hebben geen tandarts of exacte tijd: gebruik `book_walk_in` met
  een dagdeel (morning, afternoon of evening).

## Boeken
1. Vraag welke behandeling nodig is en bij welke tandarts.
2. Vraag wanneer ze willen komen en roep `check_availability` aan.
3. Vraag naar de volledige naam en daarna het telefoonnummer. E-mail is optioneel.
4. Terugkerende patienten kunnen hun e-mail geven; gebruik `lookup_patient_by_email`.
5. Vat de gegevens samen en vraag om bevestiging.
6. Roep PAS DAN `book_appointment` aan. Gebruik NOOIT verzonnen waarden.
7. Geef het referentienummer door (bijvoorbeeld APT-AB12).

Als een boeking mislukt omdat het tijdslot net bezet is, bied de alternatieven uit het resultaat aan.

## Verzetten / Annuleren
- Vraag om het referentienummer en het telefoonnummer van de boeking.
- Roep `lookup_appointment` aan, toon de gegevens en vraag om bevestiging.
- Annuleren: roep `cancel_appointment` aan.
- Verzetten: vraag de nieuwe datum/tijd, controleer beschikbaarheid, bevestig en roep
  `reschedule_appointment` aan.

## Stijl
- Eén vraag per keer; twee of drie zinnen per antwoord.
- Geen emoji en geen opmaak.
- De chat toont automatisch knoppen; som de opties niet zelf op. Je kunt
  `suggest_quick_replies` aanroepen om de knoppen te kiezen.
- Geef nooit medisch advies en deel nooit gegevens van andere patienten.
"""

LANGUAGE_TEMPLATES: dict[str, dict[str, Any]] = {
    "en": {
        "system_prompt": SYSTEM_PROMPT_EN,
        "welcome": "Hi! Welcome to {clinic_name}. How can I help you today?",
        "apology": (
            "I'm sorry, I'm having trouble completing that right now. "
            "Could you please try again, or contact the clinic directly?"
        ),
        "confirm_fallback_success": "All done. Your reference number is {reference_code}.",
        "confirm_fallback_failure": "I'm sorry, that didn't work. {error}",
        "error": "Something went wrong on our side. Please try again in a moment.",
        "day_names": ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"],
        "today": "Today",
        "tomorrow": "Tomorrow",
        "unknown_doctors": "Contact us",
        "service_value": "I would like {service}",
        "doctor_label": "Dr. {name} ({specialty})",
        "doctor_value": "I'd like Dr. {name}",
        "buttons": {
            "main_menu": [
                ("Book an appointment", "I would like to book an appointment"),
                ("Emergency booking", "I need an emergency appointment as soon as possible"),
                ("Reschedule appointment", "I want to reschedule my appointment"),
                ("Cancel appointment", "I want to cancel my appointment"),
                ("Other question", "I have another question"),
            ],
            "yes_no": [
                ("Yes, confirm", "Yes, please confirm"),
                ("No, change something", "No, I want to change something"),
            ],
            "confirm_cancel": [
                ("Yes, cancel it", "Yes, please cancel my appointment"),
                ("No, keep it", "No, I want to keep my appointment"),
            ],
            "new_returning": [
                ("New patient", "I am a new patient"),
                ("Returning patient", "I am a returning patient"),
            ],
            "post_completion": [
                ("Book another appointment", "I would like to book another appointment"),
                ("Other question", "I have another question"),
            ],
        },
    },
    "nl": {
        "system_prompt": SYSTEM_PROMPT_NL,
        "welcome": "Hallo! Welkom bij {clinic_name}. Waarmee kan ik u vandaag helpen?",
        "apology": (
            "Het spijt me, het lukt me nu even niet om dit af te ronden. "
            "Probeert u het nog eens, of neem direct contact op met de kliniek."
        ),
        "confirm_fallback_success": "Het is geregeld. Uw referentienummer is {reference_code}.",
        "confirm_fallback_failure": "Het spijt me, dat is niet gelukt. {error}",
        "error": "Er ging iets mis aan onze kant. Probeert u het zo nog eens.",
        "day_names": ["Maandag", "Dinsdag", "Woensdag", "Donderdag", "Vrijdag", "Zaterdag", "Zondag"],
        "today": "Vandaag",
        "tomorrow": "Morgen",
        "unknown_doctors": "Neem contact met ons op",
        "service_value": "Ik wil graag {service}",
        "doctor_label": "Dr. {name} ({specialty})",
        "doctor_value": "Ik wil graag bij Dr. {name}",
        "buttons": {
            "main_menu": [
                ("Afspraak maken", "Ik wil een afspraak maken"),
                ("Spoedafspraak", "Ik heb een spoedgeval en heb zo snel mogelijk een afspraak nodig"),
                ("Afspraak verzetten", "Ik wil mijn afspraak verzetten"),
                ("Afspraak annuleren", "Ik wil mijn afspraak annuleren"),
                ("Andere vraag", "Ik heb een andere vraag"),
            ],
            "yes_no": [
                ("Ja, bevestig", "Ja, bevestig alstublieft"),
                ("Nee, wijzig", "Nee, ik wil iets wijzigen"),
            ],
            "confirm_cancel": [
                ("Ja, annuleer", "Ja, annuleer mijn afspraak alstublieft"),
                ("Nee, toch niet", "Nee, ik wil mijn afspraak behouden"),
            ],
            "new_returning": [
                ("Nieuwe patient", "Ik ben een nieuwe patient"),
                ("Terugkerende patient", "Ik ben een terugkerende patient"),
            ],
            "post_completion": [
                ("Nieuwe afspraak maken", "Ik wil een afspraak maken"),
                ("Andere vraag", "Ik heb een andere vraag"),
            ],
        },
    },
}


def get_templates(language: str | None) -> dict[str, Any]:
    """Template table for *language*; unknown codes fall back to English."""
    return LANGUAGE_TEMPLATES.get((language or "").lower()[:2], LANGUAGE_TEMPLATES[DEFAULT_LANGUAGE])


def get_system_prompt(
    language: str,
    *,
    clinic_name: str,
    today: date,
    timezone: str,
    services: list[str],
    doctors: list[dict[str, Any]],
    open_time: str,
    close_time: str,
    working_days: list[int],
    duration: int,
) -> str:
    """Render the system prompt with live clinic data.

    ``doctors`` are dicts with ``id``, ``name`` and ``specialty``.
    """
    t = get_templates(language)
    day_names = t["day_names"]
    doctor_text = "; ".join(
        f"Dr. {d['name']} (ID: {d['id']}, {d['specialty']})" for d in doctors
    ) or t["unknown_doctors"]
    return t["system_prompt"].format(
        clinic_name=clinic_name,
        today=today.isoformat(),
        today_name=day_names[today.weekday()],
        tomorrow=(today + timedelta(days=1)).isoformat(),
        day_after=(today + timedelta(days=2)).isoformat(),
        timezone=timezone,
        services=", ".join(services),
        doctors=doctor_text,
        open_time=open_time,
        close_time=close_time,
        working_days=", ".join(day_names[d] for d in sorted(working_days) if 0 <= d <= 6),
        duration=duration,
    )


def get_welcome_message(language: str, clinic_name: str) -> str:
    return get_templates(language)["welcome"].format(clinic_name=clinic_name)
