from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Any, Optional, Literal


# ---------------------------------------------------------------------------
# Chat conversation
# ---------------------------------------------------------------------------

class FunctionCall(BaseModel):
    name: str
    arguments: str = ""


class ToolCall(BaseModel):
    id: str
    type: str = "function"
    function: FunctionCall


class Message(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: Optional[str] = None
    tool_calls: Optional[list[ToolCall]] = None
    tool_call_id: Optional[str] = None

    def to_payload(self) -> dict[str, Any]:
        """Wire form for the chat endpoint: unset optional fields are omitted."""
        return self.model_dump(exclude_none=True)


class ChatChoice(BaseModel):
    message: Message
    finish_reason: Optional[str] = None


class ChatUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0


class ChatResponse(BaseModel):
    choices: list[ChatChoice]
    usage: Optional[ChatUsage] = None


class ToolDefinition(BaseModel):
    name: str
    description: str
    parameters: dict[str, Any]

    def to_payload(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class TokenUsage(BaseModel):
    model: str
    input_tokens: int
    output_tokens: int
    total_tokens: int

    @model_validator(mode="after")
    def check_total(self):
        if self.total_tokens != self.input_tokens + self.output_tokens:
            raise ValueError("total_tokens must equal input_tokens + output_tokens")
        return self


# ---------------------------------------------------------------------------
# Triage results
# ---------------------------------------------------------------------------

CATEGORIES = ("build", "test", "lint", "dependency", "infra", "unknown")
CONFIDENCE_LEVELS = ("high", "medium", "low")


class Diagnosis(BaseModel):
    """Structured verdict for one failed run. Field names follow the model's camelCase JSON."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    category: Literal["build", "test", "lint", "dependency", "infra", "unknown"] = "unknown"
    root_cause: str = Field(default="", alias="rootCause")
    suggested_fix: str = Field(default="", alias="suggestedFix")
    confidence: Literal["high", "medium", "low"] = "low"
    fixable: bool = False
    affected_files: list[str] = Field(default_factory=list, alias="affectedFiles")

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, value):
        value = str(value or "").strip().lower()
        return value if value in CATEGORIES else "unknown"

    @field_validator("confidence", mode="before")
    @classmethod
    def normalize_confidence(cls, value):
        value = str(value or "").strip().lower()
        return value if value in CONFIDENCE_LEVELS else "low"

    @field_validator("affected_files", mode="before")
    @classmethod
    def none_to_empty(cls, value):
        return value or []


class FixBundle(BaseModel):
    files: dict[str, str] = Field(default_factory=dict)

    @field_validator("files", mode="before")
    @classmethod
    def none_to_empty(cls, value):
        return value or {}

    def is_empty(self) -> bool:
        return not self.files


class ChangeResult(BaseModel):
    branch_name: str
    commit_sha: str
    pr_url: str
    pr_number: int


# ---------------------------------------------------------------------------
# CI backend
# ---------------------------------------------------------------------------

class WorkflowJob(BaseModel):
    id: int
    name: str
    conclusion: Optional[str] = None
    status: Optional[str] = None


class WorkflowRun(BaseModel):
    id: int
    name: Optional[str] = ""
    path: Optional[str] = ""
    event: Optional[str] = ""
    head_branch: Optional[str] = None
    head_sha: str = ""
    status: Optional[str] = None
    conclusion: Optional[str] = None
    html_url: Optional[str] = ""
    pull_requests: list[int] = Field(default_factory=list)

    @field_validator("pull_requests", mode="before")
    @classmethod
    def pr_numbers(cls, value):
        # The API returns minimal PR objects; only the numbers are needed.
        return [pr["number"] if isinstance(pr, dict) else pr for pr in value or []]

    @property
    def pr_number(self) -> Optional[int]:
        return self.pull_requests[0] if self.pull_requests else None


class TriageOutcome(BaseModel):
    """Everything one run produced, for reporting and the exit code."""
    diagnosis: Diagnosis
    fix_attempted: bool = False
    fixed_files: list[str] = Field(default_factory=list)
    change: Optional[ChangeResult] = None
    fix_error: Optional[str] = None
    report_errors: list[str] = Field(default_factory=list)
