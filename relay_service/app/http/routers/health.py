from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request):
    """
    Store: can list sessions.
    Upstream credentials are reported, never probed.
    """
    svc = request.app.state.gen_svc
    try:
        await svc.store.list_sessions()
    except Exception as e:
        return {"ok": False, "store": False, "api_key": bool(svc.api_key), "error": str(e)}
    return {"ok": True, "store": True, "api_key": bool(svc.api_key)}
