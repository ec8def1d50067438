from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(prefix="/history", tags=["history"])


@router.get("", response_model=List[Dict[str, Any]])
async def list_history(request: Request):
    """Recorded request/response pairs, most recent first."""
    return await request.app.state.gen_svc.list_history()


@router.delete("/{entry_id}", status_code=204)
async def delete_history_entry(entry_id: str, request: Request):
    if not await request.app.state.gen_svc.delete_history_entry(entry_id):
        raise HTTPException(status_code=404, detail="History entry not found")


@router.delete("", status_code=200)
async def clear_history(request: Request):
    await request.app.state.gen_svc.clear_history()
    return {"cleared": True}
