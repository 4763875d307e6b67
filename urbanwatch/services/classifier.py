"""
Emergency verification for CCTV snapshots.

A detector flags a frame; before anything user-facing is created, a
vision model confirms whether the frame really shows a fire, flood or
road accident. The verdict decides between an Accident record and a
FalseAlarm record.
"""

import base64
import json
import re
from dataclasses import dataclass, field
from typing import Any, Protocol

import anthropic

from urbanwatch.config import get_logger, get_settings
from urbanwatch.db.models import AccidentType, Severity
from urbanwatch.errors import UpstreamIntegrationError

logger = get_logger(__name__)

SUPPORTED_IMAGE_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}

VERIFICATION_PROMPT = """You are the emergency verification step of a municipal CCTV monitoring system.
A motion/object detector flagged the attached camera frame. Decide whether it shows an event that
needs an emergency response.

VALID EMERGENCIES (is_valid: true):
- Fire: flames, heavy smoke, glow suggesting an active fire
- Flood: water covering roads or walkways
- Accident: vehicle collisions, overturned vehicles, debris from a crash

FALSE ALARMS (is_valid: false):
- Empty roads, normal traffic flow without collision
- Clear weather with no water or fire
- Frames too blurry or dark to show anything

Camera: {device_name}
Location: {location}

Return ONLY a JSON object with this structure:
{{
  "is_valid": boolean,
  "accident_type": "Fire" | "Flood" | "Accident" | null,
  "severity": "Low" | "Medium" | "High" | null,
  "title": "5-8 word title" | null,
  "description": "2-3 sentence plain description" | null,
  "confidence": number from 0 to 100,
  "detected_objects": ["list", "of", "objects"],
  "reasoning": "short explanation"
}}
For a false alarm set everything except is_valid, confidence, detected_objects and reasoning to null."""


@dataclass(frozen=True)
class SnapshotVerdict:
    """Result of verifying one snapshot."""

    is_emergency: bool
    confidence: float
    reasoning: str | None = None
    accident_type: AccidentType | None = None
    severity: Severity | None = None
    title: str | None = None
    description: str | None = None
    detected_objects: list[str] = field(default_factory=list)
    raw: dict[str, Any] = field(default_factory=dict)


class EmergencyClassifier(Protocol):
    """Anything that can judge a snapshot."""

    async def classify(
        self,
        image_bytes: bytes,
        mime_type: str,
        *,
        device_name: str,
        location: str | None,
    ) -> SnapshotVerdict: ...


def parse_json_response(response_text: str) -> Any:
    """
    Parse JSON from a model response, handling markdown code blocks.

    Returns:
        The decoded JSON value, or None if parsing fails. Callers must
        check that it is an object.
    """
    json_match = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", response_text, re.DOTALL)
    if json_match:
        try:
            return json.loads(json_match.group(1))
        except json.JSONDecodeError:
            pass

    try:
        return json.loads(response_text)
    except json.JSONDecodeError:
        pass

    json_match = re.search(r"\{.*\}", response_text, re.DOTALL)
    if json_match:
        try:
            return json.loads(json_match.group(0))
        except json.JSONDecodeError:
            pass

    return None


def _normalize_confidence(value: Any) -> float:
    """Accept 0-1 or 0-100 confidence and return 0-1."""
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return 0.0
    if confidence > 1.0:
        confidence /= 100.0
    return max(0.0, min(confidence, 1.0))


def _parse_choice(enum_cls, value: Any):
    if not value:
        return None
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        return None


def verdict_from_analysis(analysis: dict[str, Any]) -> SnapshotVerdict:
    """
    Build a verdict from the model's JSON.

    A frame only counts as an emergency when the model says so and
    names a known accident type. Only a JSON `true` counts as a yes.
    """
    accident_type = _parse_choice(AccidentType, analysis.get("accident_type"))
    is_emergency = analysis.get("is_valid") is True and accident_type is not None

    detected = analysis.get("detected_objects") or []
    if not isinstance(detected, list):
        detected = [str(detected)]

    return SnapshotVerdict(
        is_emergency=is_emergency,
        confidence=_normalize_confidence(analysis.get("confidence")),
        reasoning=analysis.get("reasoning"),
        accident_type=accident_type,
        severity=_parse_choice(Severity, analysis.get("severity")) if is_emergency else None,
        title=analysis.get("title") if is_emergency else None,
        description=analysis.get("description") if is_emergency else None,
        detected_objects=[str(obj) for obj in detected],
        raw=analysis,
    )


def get_anthropic_client() -> anthropic.AsyncAnthropic:
    """Create and return an async Anthropic client."""
    settings = get_settings()
    return anthropic.AsyncAnthropic(
        api_key=settings.anthropic_api_key.get_secret_value(),
        timeout=30.0,
    )


class AnthropicEmergencyClassifier:
    """Verifies snapshots with a Claude vision model."""

    def __init__(
        self,
        client: anthropic.AsyncAnthropic | None = None,
        model: str | None = None,
        max_tokens: int | None = None,
    ) -> None:
        settings = get_settings()
        self._client = client or get_anthropic_client()
        self._model = model or settings.detection_model
        self._max_tokens = max_tokens or settings.detection_max_tokens

    async def classify(
        self,
        image_bytes: bytes,
        mime_type: str,
        *,
        device_name: str,
        location: str | None,
    ) -> SnapshotVerdict:
        """
        Ask the model whether a snapshot shows a real emergency.

        Raises:
            UpstreamIntegrationError: If the API call fails or the reply
                is not parseable.
        """
        if mime_type not in SUPPORTED_IMAGE_TYPES:
            mime_type = "image/jpeg"

        prompt = VERIFICATION_PROMPT.format(
            device_name=device_name,
            location=location or "Unknown",
        )

        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=self._max_tokens,
                temperature=0.0,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image",
                                "source": {
                                    "type": "base64",
                                    "media_type": mime_type,
                                    "data": base64.b64encode(image_bytes).decode("ascii"),
                                },
                            },
                            {"type": "text", "text": prompt},
                        ],
                    }
                ],
            )
        except anthropic.APIConnectionError as e:
            logger.error("Detection API connection error", device_name=device_name, error=str(e))
            raise UpstreamIntegrationError(
                "Snapshot verification service unreachable",
                service="anthropic",
            ) from e
        except anthropic.RateLimitError as e:
            logger.error("Detection rate limit exceeded", device_name=device_name, error=str(e))
            raise UpstreamIntegrationError(
                "Snapshot verification rate limited",
                service="anthropic",
                status_code=429,
            ) from e
        except anthropic.APIStatusError as e:
            logger.error(
                "Detection API status error",
                device_name=device_name,
                status_code=e.status_code,
                error=str(e),
            )
            raise UpstreamIntegrationError(
                "Snapshot verification failed",
                service="anthropic",
                status_code=e.status_code,
            ) from e

        response_text = ""
        for block in response.content:
            if hasattr(block, "text"):
                response_text += block.text

        analysis = parse_json_response(response_text)
        if not isinstance(analysis, dict):
            logger.warning(
                "Failed to parse detection response",
                device_name=device_name,
                response_preview=response_text[:200],
            )
            raise UpstreamIntegrationError(
                "Snapshot verification returned an unreadable answer",
                service="anthropic",
            )

        verdict = verdict_from_analysis(analysis)
        logger.info(
            "Snapshot analysis complete",
            device_name=device_name,
            is_emergency=verdict.is_emergency,
            accident_type=verdict.accident_type.value if verdict.accident_type else None,
            confidence=verdict.confidence,
        )
        return verdict
