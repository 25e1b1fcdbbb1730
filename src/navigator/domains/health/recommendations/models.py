"""Recommendation result models.

The wire shape is a JSON object with exactly four string fields, in this
order. :class:`RecommendationPayload` validates it strictly: missing,
extra, or non-string fields are rejected.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

RESULT_FIELDS: tuple[str, ...] = (
    "dietaryRecommendations",
    "exerciseRecommendations",
    "stressManagementTechniques",
    "healthAlerts",
)

# Reserved alerts value meaning "checked, nothing to flag"
NO_ALERTS = "None identified."


class RecommendationPayload(BaseModel):
    """Strict schema for the model's structured output."""

    model_config = ConfigDict(extra="forbid", strict=True, populate_by_name=True)

    dietary_recommendations: str = Field(alias="dietaryRecommendations")
    exercise_recommendations: str = Field(alias="exerciseRecommendations")
    stress_management_techniques: str = Field(alias="stressManagementTechniques")
    health_alerts: str = Field(alias="healthAlerts")


@dataclass
class RecommendationResult:
    """One generation's advice plus its alerts text."""

    dietary_recommendations: str
    exercise_recommendations: str
    stress_management_techniques: str
    health_alerts: str

    @property
    def has_alerts(self) -> bool:
        """True when the alerts field flags something (not blank, not the sentinel)."""
        text = self.health_alerts.strip()
        return bool(text) and text != NO_ALERTS

    def advice(self) -> dict[str, str]:
        """The three advice fields, without alerts (rendered as a separate panel)."""
        return {
            "dietaryRecommendations": self.dietary_recommendations,
            "exerciseRecommendations": self.exercise_recommendations,
            "stressManagementTechniques": self.stress_management_techniques,
        }

    def to_dict(self) -> dict[str, str]:
        return {**self.advice(), "healthAlerts": self.health_alerts}

    @classmethod
    def from_payload(cls, payload: RecommendationPayload) -> RecommendationResult:
        return cls(
            dietary_recommendations=payload.dietary_recommendations,
            exercise_recommendations=payload.exercise_recommendations,
            stress_management_techniques=payload.stress_management_techniques,
            health_alerts=payload.health_alerts,
        )

    @classmethod
    def fallback(cls, detail: str) -> RecommendationResult:
        """Placeholder shown when generation failed; alerts carry the failure detail."""
        return cls(
            dietary_recommendations="Failed to load dietary recommendations. Please try again later.",
            exercise_recommendations="Failed to load exercise recommendations. Please try again later.",
            stress_management_techniques=(
                "Failed to load stress management techniques. Please try again later."
            ),
            health_alerts=f"Error checking for alerts: {detail}",
        )


def parse_recommendation(data: Any) -> RecommendationResult:
    """Validate a decoded JSON document against the four-field shape.

    Raises:
        pydantic.ValidationError: If the document does not conform.
    """
    return RecommendationResult.from_payload(RecommendationPayload.model_validate(data))
