"""
Request Schemas
===============

Pydantic models for every gate call. Field names are snake_case in Python
and camelCase on the wire (sessionId, userRequest, ...); both spellings are
accepted.
"""

from typing import Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class GateRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class SessionRequest(GateRequest):
    session_id: str = Field(min_length=1)


class LoadContextRequest(SessionRequest):
    project_path: Optional[str] = None
    # Inline file bodies, used instead of reading projectPath
    state_json: Optional[str] = None
    decisions_content: Optional[str] = None
    attempts_content: Optional[str] = None
    blocked_content: Optional[str] = None
    devlog_content: Optional[str] = None


class ClarifyIntentRequest(SessionRequest):
    user_request: str = Field(min_length=1)


class AnswerClarificationRequest(SessionRequest):
    question_id: str = Field(min_length=1)
    answer: str


class DefineScopeRequest(SessionRequest):
    user_request: str = Field(min_length=1)
    allowed_directories: Optional[list[str]] = None
    forbidden_files: Optional[list[str]] = None


class CheckActionRequest(SessionRequest):
    # On POST /api/safety "action" names the call, so the description also
    # arrives as "description" or "details"
    action: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("action", "description", "details"),
    )
    action_type: Optional[Literal[
        "create-file", "modify-file", "delete-file", "add-dependency",
        "remove-dependency", "run-command", "modify-config",
    ]] = None
    target_file: Optional[str] = None
    # Issue/approach pair, checked against the attempt log when given
    issue: Optional[str] = None

    @model_validator(mode="after")
    def describe_action(self) -> "CheckActionRequest":
        if not self.action:
            if not (self.action_type or self.target_file):
                raise ValueError("check_action needs action, actionType or targetFile")
            self.action = " on ".join(p for p in (self.action_type, self.target_file) if p)
        return self


class LogAttemptRequest(SessionRequest):
    issue: str = Field(min_length=1)
    approach: str = Field(min_length=1)
    code_or_command: str
    result: Literal["success", "failure", "partial"]
    error_message: Optional[str] = None
    lessons_learned: Optional[str] = None


class LogDecisionRequest(SessionRequest):
    decision: str = Field(min_length=1)
    category: Literal[
        "architecture", "tech-stack", "patterns", "security", "data-model",
        "api-design", "ui-design", "integration", "deployment", "business-logic",
    ]
    reasoning: str
    impact: Literal["low", "medium", "high", "critical"]
    alternatives_considered: list[str] = Field(default_factory=list)
    reversible: bool = True
    made_by: Literal["user", "ai"] = "ai"
    user_approved: bool = False
    related_files: list[str] = Field(default_factory=list)


class GetStatusRequest(SessionRequest):
    pass


class DiscoverPatternsRequest(GateRequest):
    task: str = Field(min_length=1)
    keywords: Optional[list[str]] = None
    files: Optional[list[str]] = None
    project_hash: Optional[str] = None
    project_name: Optional[str] = None
    team_id: Optional[str] = None
    safety_session_id: Optional[str] = None


class ValidateCompleteRequest(GateRequest):
    session_token: str = Field(min_length=1)
    feature_name: str = Field(min_length=1)
    feature_description: Optional[str] = None
    files_modified: list[str] = Field(default_factory=list)
    tests_written: list[str] = Field(default_factory=list)
    tests_run: bool
    tests_passed: bool
    typescript_passed: Optional[bool] = None
    safety_session_id: Optional[str] = None


ACTION_MODELS: dict[str, type[GateRequest]] = {
    "load_context": LoadContextRequest,
    "clarify_intent": ClarifyIntentRequest,
    "answer_clarification": AnswerClarificationRequest,
    "define_scope": DefineScopeRequest,
    "check_action": CheckActionRequest,
    "log_attempt": LogAttemptRequest,
    "log_decision": LogDecisionRequest,
    "get_status": GetStatusRequest,
    "get_safety_status": GetStatusRequest,
    "discover_patterns": DiscoverPatternsRequest,
    "validate_complete": ValidateCompleteRequest,
}
