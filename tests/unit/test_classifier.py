"""
Tests for snapshot verification parsing and the Anthropic classifier.
"""

from types import SimpleNamespace

import pytest

from urbanwatch.db.models import AccidentType, Severity
from urbanwatch.errors import UpstreamIntegrationError
from urbanwatch.services.classifier import (
    AnthropicEmergencyClassifier,
    parse_json_response,
    verdict_from_analysis,
)

pytestmark = pytest.mark.asyncio(loop_scope="session")


class _FakeMessages:
    def __init__(self, text: str):
        self._text = text
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(content=[SimpleNamespace(text=self._text)])


def _client(text: str) -> SimpleNamespace:
    return SimpleNamespace(messages=_FakeMessages(text))


class TestParseJsonResponse:
    """Tests for parse_json_response."""

    async def test_plain_json(self):
        assert parse_json_response('{"is_valid": true}') == {"is_valid": True}

    async def test_markdown_block(self):
        text = 'Here you go:\n```json\n{"is_valid": false}\n```'
        assert parse_json_response(text) == {"is_valid": False}

    async def test_embedded_object(self):
        assert parse_json_response('Result {"confidence": 80} done') == {"confidence": 80}

    async def test_unparseable(self):
        assert parse_json_response("no json here") is None

    async def test_array_returned_as_is(self):
        assert parse_json_response('["fire"]') == ["fire"]


class TestVerdictFromAnalysis:
    """Tests for verdict_from_analysis."""

    async def test_valid_emergency(self):
        verdict = verdict_from_analysis(
            {
                "is_valid": True,
                "accident_type": "Fire",
                "severity": "High",
                "title": "Fire at market",
                "description": "Flames visible.",
                "confidence": 92,
                "detected_objects": ["fire", "smoke"],
                "reasoning": "Visible flames",
            }
        )
        assert verdict.is_emergency is True
        assert verdict.accident_type == AccidentType.fire
        assert verdict.severity == Severity.high
        assert verdict.confidence == pytest.approx(0.92)
        assert verdict.detected_objects == ["fire", "smoke"]

    async def test_false_alarm_drops_emergency_fields(self):
        verdict = verdict_from_analysis(
            {
                "is_valid": False,
                "accident_type": None,
                "severity": "High",
                "title": "ignored",
                "confidence": 0.4,
                "detected_objects": [],
                "reasoning": "Empty road",
            }
        )
        assert verdict.is_emergency is False
        assert verdict.severity is None
        assert verdict.title is None
        assert verdict.confidence == pytest.approx(0.4)

    @pytest.mark.parametrize("flag", ["false", "true", 1, "yes", None])
    async def test_only_boolean_true_is_emergency(self, flag):
        verdict = verdict_from_analysis({"is_valid": flag, "accident_type": "Fire", "severity": "High"})
        assert verdict.is_emergency is False
        assert verdict.severity is None

    async def test_unknown_type_is_not_emergency(self):
        verdict = verdict_from_analysis({"is_valid": True, "accident_type": "Earthquake"})
        assert verdict.is_emergency is False
        assert verdict.accident_type is None

    @pytest.mark.parametrize("raw,expected", [(150, 1.0), (-3, 0.0), ("n/a", 0.0), (None, 0.0)])
    async def test_confidence_clamped(self, raw, expected):
        assert verdict_from_analysis({"confidence": raw}).confidence == expected


class TestAnthropicEmergencyClassifier:
    """Tests for AnthropicEmergencyClassifier.classify."""

    async def test_classify_sends_image_and_parses(self):
        client = _client(
            '{"is_valid": true, "accident_type": "Flood", "severity": "Medium", '
            '"confidence": 75, "detected_objects": ["water"], "reasoning": "Road under water"}'
        )
        classifier = AnthropicEmergencyClassifier(client=client, model="test-model", max_tokens=100)

        verdict = await classifier.classify(
            b"\x89PNG", "image/png", device_name="Cam 1", location="Bridge"
        )

        assert verdict.accident_type == AccidentType.flood
        call = client.messages.calls[0]
        assert call["model"] == "test-model"
        content = call["messages"][0]["content"]
        assert content[0]["source"]["media_type"] == "image/png"
        assert "Bridge" in content[1]["text"]

    async def test_unsupported_mime_sent_as_jpeg(self):
        client = _client('{"is_valid": false, "confidence": 10}')
        classifier = AnthropicEmergencyClassifier(client=client, model="m", max_tokens=10)

        await classifier.classify(b"data", "image/bmp", device_name="Cam", location=None)

        content = client.messages.calls[0]["messages"][0]["content"]
        assert content[0]["source"]["media_type"] == "image/jpeg"

    async def test_unreadable_answer_raises(self):
        classifier = AnthropicEmergencyClassifier(
            client=_client("I cannot tell"), model="m", max_tokens=10
        )
        with pytest.raises(UpstreamIntegrationError):
            await classifier.classify(b"data", "image/jpeg", device_name="Cam", location=None)

    @pytest.mark.parametrize("reply", ['["fire"]', "42", '"fire"', "null"])
    async def test_non_object_answer_raises(self, reply):
        classifier = AnthropicEmergencyClassifier(client=_client(reply), model="m", max_tokens=10)
        with pytest.raises(UpstreamIntegrationError, match="unreadable"):
            await classifier.classify(b"data", "image/jpeg", device_name="Cam", location=None)
