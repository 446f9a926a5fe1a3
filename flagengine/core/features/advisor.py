"""
Advisory risk analysis for flag configurations.

Optional collaborator: the evaluation engine never calls it, and flag
operations work with it entirely absent. Without an API key every call
returns a fixed informational result; any transport or parsing failure
returns a neutral result instead of raising.
"""

import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx
import structlog

from .interfaces import FlagDefinition

logger = structlog.get_logger()

GEMINI_URL = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"


@dataclass
class RiskAnalysis:
    """Advisory output: score 0-100, one-line summary, rollout suggestions."""
    risk_score: int
    summary: str
    suggestions: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "riskScore": self.risk_score,
            "summary": self.summary,
            "suggestions": list(self.suggestions),
        }


MISSING_KEY_ANALYSIS = RiskAnalysis(
    risk_score=0,
    summary="API Key missing. Cannot generate AI insights.",
    suggestions=["Add your Gemini API Key to env variables."],
)

UNAVAILABLE_ANALYSIS = RiskAnalysis(
    risk_score=50,
    summary="Could not analyze at this time due to an error.",
    suggestions=["Check service logs", "Ensure API key is valid"],
)


class RiskAnalyzer(ABC):
    """Advisory text generation backend."""

    @abstractmethod
    async def analyze(self, flag: FlagDefinition) -> RiskAnalysis:
        """Score the rollout risk of a flag configuration."""
        pass

    @abstractmethod
    async def describe(self, name: str) -> str:
        """Suggest a one-sentence description for a flag name."""
        pass


class StubRiskAnalyzer(RiskAnalyzer):
    """Used when no API key is configured."""

    async def analyze(self, flag: FlagDefinition) -> RiskAnalysis:
        return MISSING_KEY_ANALYSIS

    async def describe(self, name: str) -> str:
        return "Enter a description..."


class GeminiRiskAnalyzer(RiskAnalyzer):
    """Calls the Gemini generateContent REST endpoint with httpx."""

    def __init__(
        self,
        api_key: str,
        model: str = "gemini-2.5-flash",
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self.transport = transport

    async def analyze(self, flag: FlagDefinition) -> RiskAnalysis:
        prompt = (
            "Analyze the risk of this feature flag configuration.\n\n"
            f"Flag Name: {flag.name}\n"
            f"Key: {flag.key}\n"
            f"Environment: {flag.environment.value}\n"
            f"Rollout: {flag.rollout_percentage}%\n"
            f"Type: {flag.kind.value}\n"
            f"Description: {flag.description}\n"
            f"Rules: {json.dumps(flag.to_dict()['rules'])}\n\n"
            "Provide a JSON response with a risk score (riskScore, 0-100), "
            "a short summary, and 3 specific suggestions for safe rollout."
        )
        try:
            text = await self._generate(prompt, json_response=True)
            data = json.loads(text)
            return RiskAnalysis(
                risk_score=max(0, min(100, int(data["riskScore"]))),
                summary=str(data.get("summary", "")),
                suggestions=[str(s) for s in data.get("suggestions", [])],
            )
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning("Risk analysis failed", flag_key=flag.key, error=str(e))
            return UNAVAILABLE_ANALYSIS

    async def describe(self, name: str) -> str:
        prompt = (
            "Write a concise, professional description (max 1 sentence) "
            f'for a software feature flag named "{name}".'
        )
        try:
            return (await self._generate(prompt)).strip()
        except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning("Description generation failed", name=name, error=str(e))
            return ""

    async def _generate(self, prompt: str, json_response: bool = False) -> str:
        body: dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
        if json_response:
            body["generationConfig"] = {"responseMimeType": "application/json"}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(
                GEMINI_URL.format(model=self.model),
                params={"key": self.api_key},
                json=body,
            )
        response.raise_for_status()

        payload = response.json()
        text = payload["candidates"][0]["content"]["parts"][0]["text"]
        if not text:
            raise ValueError("No response from model")
        return text


def get_risk_analyzer(api_key: str | None, model: str, timeout: float) -> RiskAnalyzer:
    """Pick the analyzer for the configured key."""
    if not api_key:
        return StubRiskAnalyzer()
    return GeminiRiskAnalyzer(api_key, model=model, timeout=timeout)
