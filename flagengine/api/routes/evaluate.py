"""
Evaluation routes.

A missing flag evaluates to off (reason "not_found") with 200. A store
outage answers 503 so SDKs can fall back to their own defaults instead
of treating the flag as off.
"""

from typing import Any

from fastapi import APIRouter

from flagengine.core.features import Engine
from flagengine.schemas.flag import EvaluateAllRequest, EvaluateRequest

router = APIRouter()


@router.post("")
async def evaluate(data: EvaluateRequest, engine: Engine) -> dict[str, Any]:
    """Evaluate one flag for one context."""
    decision = await engine.evaluate(
        data.flag_key,
        data.environment,
        data.context.to_domain(),
    )
    return decision.to_dict()


@router.post("/all")
async def evaluate_all(data: EvaluateAllRequest, engine: Engine) -> dict[str, dict[str, Any]]:
    """
    Evaluate every flag in an environment for one context.

    Returns a dictionary of flag_key -> decision.
    """
    decisions = await engine.evaluate_all(data.environment, data.context.to_domain())
    return {key: d.to_dict() for key, d in decisions.items()}
