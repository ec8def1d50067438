from fastapi import APIRouter, Request

router = APIRouter(prefix="/tools", tags=["tools"])


@router.get("")
def list_tools(request: Request):
    """Client-side tools offered to the model, with their input schemas."""
    gen_svc = request.app.state.gen_svc
    return {"tools": gen_svc.list_tools(), "server_side": gen_svc.server_tools or []}
