"""
Fix producer: asks the model for corrected file contents and writes them into the
workspace.

Only runs for a fixable diagnosis. The conversation gets the read-only tool set,
so it can inspect files but not enumerate jobs or re-read logs.
"""

from typing import Optional

from pydantic import ValidationError

from triage.agents.prompts import FIX_SYSTEM_PROMPT, build_fix_user_prompt
from triage.agents.tool_loop import ToolLoop
from triage.errors import FixError
from triage.models.schemas import Diagnosis, FixBundle
from triage.tools.codebase_tools import CodebaseTools
from triage.tools.tool_registry import FIX_TOOL_SET
from triage.utils.json_extract import extract_json
from triage.utils.logger import get_logger

logger = get_logger(__name__)


class FixGenerator:
    """Generates and applies a fix bundle for one diagnosis."""

    AGENT_NAME = "fix_generator"

    def __init__(self, loop: ToolLoop, codebase: CodebaseTools):
        self.loop = loop
        self.codebase = codebase

    async def run(self, diagnosis: Diagnosis) -> Optional[FixBundle]:
        """Generate a fix and write it to disk.

        Returns:
            None when the diagnosis is not fixable, an empty bundle when the model
            has no confident fix, otherwise the bundle of files actually written

        Raises:
            FixError: the model's answer could not be decoded or a file write failed
        """
        if not diagnosis.fixable:
            logger.info("Diagnosis not marked as fixable, skipping auto-fix", extra={"stage": self.AGENT_NAME})
            return None

        logger.info("Attempting auto-fix", extra={
            "stage": self.AGENT_NAME, "action": "start",
            "extra": {"affected_files": diagnosis.affected_files},
        })

        response = await self.loop.run_tool_loop(
            FIX_SYSTEM_PROMPT,
            build_fix_user_prompt(diagnosis.root_cause, diagnosis.suggested_fix, diagnosis.affected_files),
            FIX_TOOL_SET,
        )

        try:
            bundle = FixBundle.model_validate_json(extract_json(response))
        except ValidationError as e:
            raise FixError(f"parsing fix result: {e}") from e

        if bundle.is_empty():
            logger.warning("No confident fix: model returned no file changes", extra={
                "stage": self.AGENT_NAME, "action": "no_confident_fix",
            })
            return bundle

        return self.apply(bundle)

    def apply(self, bundle: FixBundle) -> FixBundle:
        """Write every safe path in ``bundle``; unsafe paths are skipped, not fatal."""
        written: dict[str, str] = {}
        for path, content in bundle.files.items():
            try:
                clean_path = self.codebase.write_file(path, content)
            except (OSError, RuntimeError) as e:
                # RuntimeError: symlink loop while resolving the path
                raise FixError(f"writing corrected file {path}: {e}") from e
            if clean_path is None:
                logger.warning("Ignoring unsafe file path from model", extra={
                    "stage": self.AGENT_NAME, "action": "unsafe_path", "extra": {"path": path},
                })
                continue
            written[clean_path] = content
            logger.info("Wrote corrected file", extra={"stage": self.AGENT_NAME, "extra": {"path": clean_path}})

        logger.info("Auto-fix complete", extra={
            "stage": self.AGENT_NAME, "action": "complete",
            "extra": {"files_changed": len(written), "files_skipped": len(bundle.files) - len(written)},
        })
        return FixBundle(files=written)
