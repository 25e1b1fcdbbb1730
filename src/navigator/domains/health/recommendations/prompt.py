"""Instruction block and output-shape constraint for recommendation requests."""

from __future__ import annotations

from typing import Any, Sequence

from navigator.core.storage.models import LogEntry, Profile
from navigator.domains.health.recommendations.models import NO_ALERTS, RESULT_FIELDS

# Most recent logs embedded in one request
RECENT_LOG_LIMIT = 7

_NAVIGATOR_ROLE = """\
As a Proactive Health & Wellness Navigator AI, analyze the following user data \
and provide hyper-personalized recommendations for diet, exercise, and stress \
management. Also, flag any potential health issues that warrant discussion with \
a doctor."""

_OUTPUT_INSTRUCTIONS = f"""\
Based on this data, provide:
1.  **Dietary Recommendations:** Specific food suggestions, meal ideas, or general dietary advice.
2.  **Exercise Recommendations:** Specific workout types, duration, or activity goals.
3.  **Stress Management Techniques:** Practical tips or exercises.
4.  **Potential Health Alerts:** Any patterns or anomalies that suggest a potential \
health issue needing professional medical consultation. If none, state "{NO_ALERTS}"

Format your response as a JSON object with the following structure:
{{
  "dietaryRecommendations": "string",
  "exerciseRecommendations": "string",
  "stressManagementTechniques": "string",
  "healthAlerts": "string"
}}"""


def _or(value: Any, placeholder: str) -> str:
    if value is None:
        return placeholder
    text = str(value).strip()
    return text or placeholder


def _render_profile(profile: Profile) -> str:
    return "\n".join([
        "User Profile:",
        f"- Goals: {_or(profile.goals, 'Not specified')}",
        f"- Dietary Restrictions: {_or(profile.dietary_restrictions, 'None')}",
        f"- Exercise Preferences: {_or(profile.exercise_preferences, 'None')}",
        f"- Genetic Predispositions (simulated): {_or(profile.genetic_predispositions, 'None known')}",
        f"- Medical Conditions (simulated): {_or(profile.medical_conditions, 'None')}",
    ])


def _render_log(entry: LogEntry) -> str:
    logged_on = entry.date.isoformat() if entry.date is not None else "N/A"
    return "\n".join([
        f"- Date: {logged_on}",
        f"  - Heart Rate: {_or(entry.heart_rate, 'N/A')} bpm",
        f"  - Sleep Hours: {_or(entry.sleep_hours, 'N/A')} hours",
        f"  - Activity Minutes: {_or(entry.activity_minutes, 'N/A')} minutes",
        f"  - Mood: {_or(entry.mood, 'N/A')}",
        f"  - Symptoms: {_or(entry.symptoms, 'None')}",
    ])


def build_prompt(profile: Profile, logs: Sequence[LogEntry]) -> str:
    """Render the instruction block.

    ``logs`` must already be ordered newest first; only the first
    :data:`RECENT_LOG_LIMIT` entries are embedded.
    """
    recent = list(logs)[:RECENT_LOG_LIMIT]
    if recent:
        log_lines = "\n".join(_render_log(entry) for entry in recent)
    else:
        log_lines = "- No health logs recorded yet."

    return "\n\n".join([
        _NAVIGATOR_ROLE,
        _render_profile(profile),
        f"Recent Health Logs (last {RECENT_LOG_LIMIT} entries, most recent first):\n{log_lines}",
        _OUTPUT_INSTRUCTIONS,
    ])


def build_generation_config() -> dict[str, Any]:
    """Output-shape constraint: a JSON object with the four string fields, in order."""
    return {
        "responseMimeType": "application/json",
        "responseSchema": {
            "type": "OBJECT",
            "properties": {name: {"type": "STRING"} for name in RESULT_FIELDS},
            "required": list(RESULT_FIELDS),
            "propertyOrdering": list(RESULT_FIELDS),
        },
    }
