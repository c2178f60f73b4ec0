"""
Diagnosis producer: investigates the failed run with the diagnostic tool set and
decodes the model's final answer into a Diagnosis.
"""

from pydantic import ValidationError

from triage.agents.prompts import TRIAGE_SYSTEM_PROMPT, build_triage_user_prompt
from triage.agents.tool_loop import ToolLoop
from triage.errors import DiagnosisError
from triage.integrations.connection_config import TriageConfig
from triage.models.schemas import Diagnosis
from triage.tools.tool_registry import DIAGNOSTIC_TOOL_SET
from triage.utils.json_extract import extract_json
from triage.utils.logger import get_logger

logger = get_logger(__name__)

ERROR_PREVIEW_CHARS = 500


def parse_diagnosis(text: str) -> Diagnosis:
    """Decode model output into a Diagnosis.

    Raises:
        DiagnosisError: the text holds no decodable diagnosis; the message carries
            the offending text, truncated
    """
    candidate = extract_json(text)
    try:
        return Diagnosis.model_validate_json(candidate)
    except ValidationError as e:
        preview = candidate
        if len(preview) > ERROR_PREVIEW_CHARS:
            preview = preview[:ERROR_PREVIEW_CHARS] + "... (truncated)"
        raise DiagnosisError(f"parsing triage result: {e} (response: {preview})") from e


class DiagnosisAgent:
    """Runs the diagnostic conversation for one workflow run."""

    AGENT_NAME = "diagnosis"

    def __init__(self, loop: ToolLoop, config: TriageConfig):
        self.loop = loop
        self.config = config

    async def run(self) -> Diagnosis:
        logger.info("Starting triage analysis", extra={"run_id": self.config.run_id, "stage": self.AGENT_NAME})

        response = await self.loop.run_tool_loop(
            TRIAGE_SYSTEM_PROMPT,
            build_triage_user_prompt(self.config.run_id, self.config.repository),
            DIAGNOSTIC_TOOL_SET,
        )
        diagnosis = parse_diagnosis(response)

        logger.info("Triage analysis complete", extra={
            "run_id": self.config.run_id, "stage": self.AGENT_NAME, "action": "complete",
            "extra": {
                "category": diagnosis.category,
                "confidence": diagnosis.confidence,
                "fixable": diagnosis.fixable,
                "affected_files": diagnosis.affected_files,
            },
        })
        return diagnosis
