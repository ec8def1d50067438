from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from relay_service.app.http.schemas import ChatRequest, ChatResponse
from relay_service.core.logging import logger

router = APIRouter(prefix="/chat", tags=["chat"])


@router.post("", response_model=ChatResponse)
async def chat(request: Request, body: ChatRequest):
    logger.info(f"/chat called: session_id={body.session_id}, model={body.model}")
    gen_service = request.app.state.gen_svc
    return await gen_service.chat(body.session_id, body.prompt, **body.options())


@router.post("/stream")
async def stream(request: Request, body: ChatRequest):
    logger.info(f"/chat/stream called: session_id={body.session_id}, model={body.model}")
    gen_service = request.app.state.gen_svc

    async def event_generator():
        agen = gen_service.stream(body.session_id, body.prompt, **body.options())
        try:
            async for chunk in agen:
                # Check disconnect BEFORE yielding
                if await request.is_disconnected():
                    logger.info(f"Client disconnected: session_id={body.session_id}")
                    break
                yield chunk
        finally:
            await agen.aclose()

    return StreamingResponse(event_generator(), media_type="application/x-ndjson")
