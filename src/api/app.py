"""FastAPI app exposing the streaming chat endpoint."""

import os

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from .schemas import ChatRequest, DebugLogsResponse, HealthResponse
from .security import ClientIdentityError, client_key_from_request
from .service import ChatAPIService, InvalidChatRequest

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def _allowed_origins() -> list[str]:
    raw = os.getenv(
        "CHAT_API_ALLOW_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    )
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def create_app(service: ChatAPIService | None = None) -> FastAPI:
    app = FastAPI(title="Portfolio Chat API", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.chat_service = service

    def get_service() -> ChatAPIService:
        if app.state.chat_service is None:
            app.state.chat_service = ChatAPIService()
        return app.state.chat_service

    @app.get("/health", response_model=HealthResponse)
    def health(chat_service: ChatAPIService = Depends(get_service)) -> HealthResponse:
        return chat_service.health()

    @app.post("/chat")
    async def chat(
        payload: ChatRequest,
        request: Request,
        chat_service: ChatAPIService = Depends(get_service),
    ) -> StreamingResponse:
        try:
            turn = chat_service.build_turn(payload)
            client_key = client_key_from_request(request)
        except (InvalidChatRequest, ClientIdentityError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return StreamingResponse(
            chat_service.stream_turn(turn, client_key=client_key, headers=request.headers),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.get("/debug/logs", response_model=DebugLogsResponse)
    def debug_logs(limit: int | None = None, chat_service: ChatAPIService = Depends(get_service)) -> DebugLogsResponse:
        if chat_service.config.is_production:
            raise HTTPException(status_code=404, detail="Not found.")
        entries = chat_service.debug_entries(limit)
        return DebugLogsResponse(count=len(entries), entries=entries)

    return app


app = create_app()
