"""
Requirement Evaluator
Scores a participant metrics snapshot against a requirement definition.

RequirementEvaluator is the interface the tracker depends on. The
contract: evaluate() never raises. Every internal failure (API error,
timeout, unparseable reply, unknown level) comes back as a well-formed
result with Level.ERROR, so one broken evaluation never aborts a cycle.

ClaudeEvaluator asks Claude for a JSON verdict:
    {"level": "Excellent|Ok|Poor", "message": "...", "proof": "..."}
"""

import os
import re
import json
import asyncio
import logging
from typing import List, Tuple

import anthropic

from common.config import CLAUDE_MODEL, EVALUATOR_MAX_TOKENS, EVALUATOR_TEMPERATURE, EVALUATOR_TIMEOUT
from common.models import EvaluationResult, Level, Requirement, UserMetrics

logger = logging.getLogger(__name__)

UNAVAILABLE_MESSAGE = "evaluation unavailable"

# Claude sometimes wraps JSON in a ```json fence
_FENCE_PATTERN = re.compile(r'^```(?:json)?\s*(.*?)\s*```$', re.DOTALL)


class EvaluationParseError(ValueError):
    pass


def error_result(task_id: str, requirement_id: str, proof: str) -> EvaluationResult:
    return EvaluationResult(
        task_id=task_id,
        requirement_id=requirement_id,
        level=Level.ERROR,
        message=UNAVAILABLE_MESSAGE,
        proof=proof,
    )


class RequirementEvaluator:
    """Interface: score metrics against one requirement. Must not raise."""

    async def evaluate(self, metrics: List[UserMetrics], requirement: Requirement, task_id: str) -> EvaluationResult:
        raise NotImplementedError


def build_prompt(metrics: List[UserMetrics], requirement: Requirement) -> str:
    return f"""
Evaluate Discord activity based on the following requirement:
{json.dumps(requirement.to_dict())}

Using this filtered activity data:
{json.dumps([m.to_dict() for m in metrics])}

Provide an evaluation in the following JSON format:
{{
    "level": "Excellent/Ok/Poor",
    "message": "An encouraging one-line private message with exactly one emoji, that doesn't reveal metrics",
    "proof": "Brief justification without exposing raw data"
}}

Guidelines:
- Focus on patterns and trends, not raw numbers
- Be encouraging and constructive
- Suggest specific improvements for "Poor" ratings
- Celebrate achievements for "Excellent" ratings
- Keep the message concise and actionable as a private one-line notification
- Include exactly one emoji to add a friendly tone
- Ensure the message sounds natural, like a kind manager giving a nudge to be more active
- Reply with the JSON object only
""".strip()


def parse_evaluation(text: str) -> Tuple[Level, str, str]:
    """
    Parse Claude's reply into (level, message, proof).

    Raises EvaluationParseError if the reply is not the expected JSON
    object or names a level other than Excellent, Ok or Poor.
    """
    text = (text or "").strip()
    fenced = _FENCE_PATTERN.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise EvaluationParseError(f"Evaluation parsing error: {e}") from e
    if not isinstance(data, dict):
        raise EvaluationParseError("Evaluation parsing error: expected a JSON object")

    try:
        level = Level.parse(data.get('level'))
    except ValueError as e:
        raise EvaluationParseError(str(e)) from e
    if level == Level.ERROR:
        raise EvaluationParseError("Evaluation parsing error: level must be Excellent, Ok or Poor")

    return level, str(data.get('message', '')), str(data.get('proof', ''))


class ClaudeEvaluator(RequirementEvaluator):
    """Requirement evaluator backed by the Anthropic Messages API."""

    def __init__(self, client: anthropic.Anthropic = None, model: str = CLAUDE_MODEL,
                 timeout: float = EVALUATOR_TIMEOUT):
        if client is None:
            client = anthropic.Anthropic(api_key=os.environ["ANTHROPIC_API_KEY"], timeout=timeout)
        self.client = client
        self.model = model
        self.timeout = timeout

    def _generate(self, prompt: str) -> str:
        response = self.client.messages.create(
            model=self.model,
            max_tokens=EVALUATOR_MAX_TOKENS,
            temperature=EVALUATOR_TEMPERATURE,
            messages=[{"role": "user", "content": prompt}],
        )
        return response.content[0].text

    async def evaluate(self, metrics: List[UserMetrics], requirement: Requirement, task_id: str) -> EvaluationResult:
        try:
            prompt = build_prompt(metrics, requirement)
            text = await asyncio.wait_for(asyncio.to_thread(self._generate, prompt), timeout=self.timeout)
            level, message, proof = parse_evaluation(text)
        except asyncio.TimeoutError:
            logger.error(f"Claude evaluation timed out after {self.timeout}s ({task_id}/{requirement.id})")
            return error_result(task_id, requirement.id, f"AI service timeout after {self.timeout}s")
        except anthropic.APIError as e:
            logger.error(f"Claude API error: {e}")
            return error_result(task_id, requirement.id, f"AI service error: {e}")
        except EvaluationParseError as e:
            logger.error(f"Error parsing AI response: {e}")
            return error_result(task_id, requirement.id, str(e))
        except Exception as e:
            logger.error(f"AI evaluation error: {e}", exc_info=True)
            return error_result(task_id, requirement.id, f"AI service error: {e}")

        logger.debug(f"Evaluated {task_id}/{requirement.id}: {level.value}")
        return EvaluationResult(
            task_id=task_id,
            requirement_id=requirement.id,
            level=level,
            message=message,
            proof=proof,
        )
