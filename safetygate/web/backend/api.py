import json
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, Request

from safetygate.errors import MalformedInput
from safetygate.service import SafetyService

router = APIRouter()


def get_service(request: Request) -> SafetyService:
    return request.app.state.service


async def read_body(request: Request) -> dict[str, Any]:
    """Parse the request body as a JSON object."""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MalformedInput(f"Request body is not valid JSON: {e}")
    if not isinstance(body, dict):
        raise MalformedInput("Request body must be a JSON object")
    return body


@router.post("/safety")
async def safety_call(request: Request):
    """Run any gate call. The body carries `action` plus that call's fields."""
    body = await read_body(request)
    action = body.pop("action", None)
    return await get_service(request).dispatch(action, body)


@router.get("/safety")
async def safety_status(request: Request, sessionId: Optional[str] = None):
    """Read-only gate status for a session."""
    return await get_service(request).dispatch("get_status", {"sessionId": sessionId} if sessionId else {})


@router.post("/patterns/discover")
async def discover_patterns(request: Request):
    """Start gate: match guidance modules and issue a session token."""
    body = await read_body(request)
    return await get_service(request).dispatch("discover_patterns", body)


@router.post("/patterns/validate")
async def validate_complete(request: Request):
    """End gate: validate a finished feature against its token."""
    body = await read_body(request)
    return await get_service(request).dispatch("validate_complete", body)


@router.get("/patterns/validate")
async def get_enforcement_session(request: Request, sessionToken: Optional[str] = None):
    """Status of an enforcement token."""
    if not sessionToken:
        raise MalformedInput("sessionToken query parameter is required")
    session = await get_service(request).enforcement.get_session(sessionToken)
    if session is None:
        raise HTTPException(status_code=404, detail="Session not found")
    return session
