from typing import List

from fastapi import APIRouter, HTTPException, Request

from relay_service.app.http.schemas import SessionInfo, TurnOut

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", response_model=SessionInfo)
async def create_session(request: Request):
    """Create a new session."""
    gen_svc = request.app.state.gen_svc
    return await gen_svc.create_session()


@router.get("", response_model=List[SessionInfo])
async def list_sessions(request: Request):
    """List all sessions."""
    gen_svc = request.app.state.gen_svc
    return await gen_svc.list_sessions()


@router.get("/{session_id}/messages", response_model=List[TurnOut])
async def get_session_messages(session_id: str, request: Request, include_tool_results: bool = False):
    """Get the transcript of a session. Tool-result turns are hidden by default."""
    gen_svc = request.app.state.gen_svc
    return await gen_svc.get_session_messages(session_id, visible_only=not include_tool_results)


@router.delete("/{session_id}", status_code=204)
async def delete_session(session_id: str, request: Request):
    """Delete a session by ID."""
    gen_svc = request.app.state.gen_svc
    success = await gen_svc.delete_session(session_id)
    if not success:
        raise HTTPException(status_code=404, detail="Session not found")


@router.delete("", status_code=200)
async def delete_all_sessions(request: Request):
    """Delete all sessions."""
    gen_svc = request.app.state.gen_svc
    count = await gen_svc.delete_all_sessions()
    return {"deleted_count": count}
