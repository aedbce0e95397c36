"""
MCP Tools for Safety Gates
==========================

Exposes every gate call to an agent as an MCP tool. Each tool validates its
arguments through SafetyService.dispatch and returns the structured result
as JSON text.

Call order the gates expect:
- safety_load_context: read project memory (decisions, attempts, blockers)
- safety_clarify_intent / safety_answer_clarification: make the request concrete
- safety_define_scope: lock which files and actions are allowed
- safety_check_action: before every file change, dependency or command
- safety_discover_patterns: load guidance modules and get a session token
- safety_validate_complete: close the token when the feature is done

safety_log_attempt, safety_log_decision and safety_get_status can be called
at any point.
"""

import json
from typing import Any

from claude_code_sdk import tool, create_sdk_mcp_server, McpSdkServerConfig

from safetygate.errors import MalformedInput
from safetygate.service import SafetyService


# Global state
_service: SafetyService | None = None


def _get_service() -> SafetyService:
    if _service is None:
        raise RuntimeError("Safety tools not initialized. Call create_safety_tools_server() first.")
    return _service


def _text(payload: dict, is_error: bool = False) -> dict[str, Any]:
    result: dict[str, Any] = {
        "content": [{"type": "text", "text": json.dumps(payload, indent=2, default=str)}]
    }
    if is_error:
        result["is_error"] = True
    return result


async def _run(action: str, args: dict[str, Any]) -> dict[str, Any]:
    try:
        return _text(await _get_service().dispatch(action, args))
    except MalformedInput as e:
        return _text(e.to_dict(), is_error=True)
    except Exception as e:
        return {
            "content": [{"type": "text", "text": f"Error running {action}: {e}"}],
            "is_error": True
        }


SESSION_ID = {"type": "string", "description": "Safety session id (one per conversation)"}


@tool(
    "safety_load_context",
    "Load project memory (state file, decisions, attempts, blockers). Call this first.",
    {
        "type": "object",
        "properties": {
            "session_id": SESSION_ID,
            "project_path": {"type": "string", "description": "Project root directory (defaults to the working directory)"},
        },
        "required": ["session_id"]
    }
)
async def safety_load_context(args: dict[str, Any]) -> dict[str, Any]:
    """Load project context into the session."""
    return await _run("load_context", args)


@tool(
    "safety_clarify_intent",
    "Score how clear the user's request is and get clarification questions.",
    {
        "type": "object",
        "properties": {
            "session_id": SESSION_ID,
            "user_request": {"type": "string", "description": "The user's request, verbatim"},
        },
        "required": ["session_id", "user_request"]
    }
)
async def safety_clarify_intent(args: dict[str, Any]) -> dict[str, Any]:
    return await _run("clarify_intent", args)


@tool(
    "safety_answer_clarification",
    "Record the user's answer to a clarification question.",
    {
        "type": "object",
        "properties": {
            "session_id": SESSION_ID,
            "question_id": {"type": "string", "description": "Id of a pending question"},
            "answer": {"type": "string", "description": "The user's answer"},
        },
        "required": ["session_id", "question_id", "answer"]
    }
)
async def safety_answer_clarification(args: dict[str, Any]) -> dict[str, Any]:
    return await _run("answer_clarification", args)


@tool(
    "safety_define_scope",
    "Lock which actions and directories this request may touch.",
    {
        "type": "object",
        "properties": {
            "session_id": SESSION_ID,
            "user_request": {"type": "string", "description": "The confirmed request"},
            "allowed_directories": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Directories changes are limited to (empty means anywhere)"
            },
            "forbidden_files": {
                "type": "array",
                "items": {"type": "string"},
                "description": "Extra files or directories that must not change"
            },
        },
        "required": ["session_id", "user_request"]
    }
)
async def safety_define_scope(args: dict[str, Any]) -> dict[str, Any]:
    return await _run("define_scope", args)


@tool(
    "safety_check_action",
    "Check a planned action against decisions and the scope lock. Call before every change.",
    {
        "type": "object",
        "properties": {
            "session_id": SESSION_ID,
            "action": {"type": "string", "description": "What you are about to do"},
            "action_type": {
                "type": "string",
                "description": "create-file, modify-file, delete-file, add-dependency, "
                               "remove-dependency, run-command, modify-config"
            },
            "target_file": {"type": "string", "description": "File the action touches"},
            "issue": {"type": "string", "description": "Issue this action is meant to fix"},
        },
        "required": ["session_id", "action"]
    }
)
async def safety_check_action(args: dict[str, Any]) -> dict[str, Any]:
    """Check an action before taking it."""
    return await _run("check_action", args)


@tool(
    "safety_log_attempt",
    "Record an approach tried for an issue and whether it worked.",
    {
        "type": "object",
        "properties": {
            "session_id": SESSION_ID,
            "issue": {"type": "string"},
            "approach": {"type": "string"},
            "code_or_command": {"type": "string"},
            "result": {"type": "string", "description": "success, failure or partial"},
            "error_message": {"type": "string"},
            "lessons_learned": {"type": "string"},
        },
        "required": ["session_id", "issue", "approach", "code_or_command", "result"]
    }
)
async def safety_log_attempt(args: dict[str, Any]) -> dict[str, Any]:
    return await _run("log_attempt", args)


@tool(
    "safety_log_decision",
    "Record a decision. Reports a conflict with earlier high-impact decisions.",
    {
        "type": "object",
        "properties": {
            "session_id": SESSION_ID,
            "decision": {"type": "string"},
            "category": {
                "type": "string",
                "description": "architecture, tech-stack, patterns, security, data-model, "
                               "api-design, ui-design, integration, deployment, business-logic"
            },
            "reasoning": {"type": "string"},
            "impact": {"type": "string", "description": "low, medium, high or critical"},
            "alternatives_considered": {"type": "array", "items": {"type": "string"}},
            "reversible": {"type": "boolean"},
            "made_by": {"type": "string", "description": "user or ai"},
            "user_approved": {"type": "boolean"},
            "related_files": {"type": "array", "items": {"type": "string"}},
        },
        "required": ["session_id", "decision", "category", "reasoning", "impact"]
    }
)
async def safety_log_decision(args: dict[str, Any]) -> dict[str, Any]:
    return await _run("log_decision", args)


@tool(
    "safety_get_status",
    "Show which safety gates have passed and what to call next.",
    {"session_id": str}
)
async def safety_get_status(args: dict[str, Any]) -> dict[str, Any]:
    return await _run("get_status", args)


@tool(
    "safety_discover_patterns",
    "Load the guidance modules for a task and open an enforcement session token.",
    {
        "type": "object",
        "properties": {
            "task": {"type": "string", "description": "What you are about to build"},
            "keywords": {"type": "array", "items": {"type": "string"}},
            "files": {"type": "array", "items": {"type": "string"}, "description": "Files you plan to touch"},
            "project_hash": {"type": "string"},
            "project_name": {"type": "string"},
            "safety_session_id": {"type": "string", "description": "Safety session to link"},
        },
        "required": ["task"]
    }
)
async def safety_discover_patterns(args: dict[str, Any]) -> dict[str, Any]:
    """Start gate."""
    return await _run("discover_patterns", args)


@tool(
    "safety_validate_complete",
    "Validate a finished feature against its session token. Each token validates once.",
    {
        "type": "object",
        "properties": {
            "session_token": {"type": "string", "description": "Token from safety_discover_patterns"},
            "feature_name": {"type": "string"},
            "feature_description": {"type": "string"},
            "files_modified": {"type": "array", "items": {"type": "string"}},
            "tests_written": {"type": "array", "items": {"type": "string"}},
            "tests_run": {"type": "boolean"},
            "tests_passed": {"type": "boolean"},
            "typescript_passed": {"type": "boolean"},
            "safety_session_id": {"type": "string"},
        },
        "required": ["session_token", "feature_name", "tests_run", "tests_passed"]
    }
)
async def safety_validate_complete(args: dict[str, Any]) -> dict[str, Any]:
    """End gate."""
    return await _run("validate_complete", args)


# List of safety tool names for allowed_tools
SAFETY_TOOLS = [
    "mcp__safety__safety_load_context",
    "mcp__safety__safety_clarify_intent",
    "mcp__safety__safety_answer_clarification",
    "mcp__safety__safety_define_scope",
    "mcp__safety__safety_check_action",
    "mcp__safety__safety_log_attempt",
    "mcp__safety__safety_log_decision",
    "mcp__safety__safety_get_status",
    "mcp__safety__safety_discover_patterns",
    "mcp__safety__safety_validate_complete",
]


def create_safety_tools_server(service: SafetyService) -> McpSdkServerConfig:
    """
    Create an MCP server with the safety gate tools.

    Args:
        service: The SafetyService every tool dispatches to

    Returns:
        McpSdkServerConfig to add to mcp_servers
    """
    global _service
    _service = service

    return create_sdk_mcp_server(
        name="safety",
        version="1.0.0",
        tools=[
            safety_load_context,
            safety_clarify_intent,
            safety_answer_clarification,
            safety_define_scope,
            safety_check_action,
            safety_log_attempt,
            safety_log_decision,
            safety_get_status,
            safety_discover_patterns,
            safety_validate_complete,
        ]
    )
