"""HTTP API server using Starlette."""
from __future__ import annotations

import contextlib
from collections.abc import AsyncIterator
from typing import Any

from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, StreamingResponse
from starlette.routing import Route

from image_agent.errors import AgentError, ValidationError
from image_agent.logging import get_logger
from image_agent.service import AgentService

logger = get_logger("web")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def create_app(service: AgentService) -> Starlette:
    """Create the agent API application.

    Args:
        service: AgentService handling all requests
    """

    async def create_session(request: Request) -> JSONResponse:
        body = await _json_body(request)
        created = service.create_session(body.get("userId", ""), body.get("config") or {})
        return JSONResponse(created, status_code=201)

    async def list_sessions(request: Request) -> JSONResponse:
        sessions = service.list_sessions(request.query_params.get("userId", ""))
        return JSONResponse({"sessions": sessions})

    async def session_detail(request: Request) -> JSONResponse:
        return JSONResponse(service.get_session(request.path_params["session_id"]))

    async def delete_session(request: Request) -> JSONResponse:
        session_id = request.path_params["session_id"]
        service.delete_session(session_id)
        return JSONResponse({"sessionId": session_id, "deleted": True})

    async def send_message(request: Request) -> Any:
        """SSE stream of turn events, or a JSON result when ``stream`` is false."""
        session_id = request.path_params["session_id"]
        body = await _json_body(request)
        text = body.get("message", "")
        images = body.get("images") or []
        if not isinstance(images, list):
            raise ValidationError("images must be a list")

        if body.get("stream", True) is False:
            result = await service.run_message(session_id, text, images)
            return JSONResponse(result.to_dict())

        events = service.send_message(session_id, text, images)

        async def event_generator() -> AsyncIterator[str]:
            try:
                async for event in events:
                    yield event.to_sse()
                yield "data: [DONE]\n\n"
            finally:
                await events.aclose()

        return StreamingResponse(event_generator(), media_type="text/event-stream", headers=SSE_HEADERS)

    async def cancel_session(request: Request) -> JSONResponse:
        session_id = request.path_params["session_id"]
        return JSONResponse({"sessionId": session_id, "cancelled": service.cancel(session_id)})

    async def list_tools(request: Request) -> JSONResponse:
        return JSONResponse({"tools": service.list_tools(request.query_params.get("category"))})

    async def agent_error(request: Request, exc: AgentError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
        return JSONResponse({"error": {"code": exc.code, "message": exc.message}}, status_code=exc.status_code)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        yield
        await service.close()

    routes = [
        Route("/api/sessions", create_session, methods=["POST"]),
        Route("/api/sessions", list_sessions, methods=["GET"]),
        Route("/api/sessions/{session_id}", session_detail, methods=["GET"]),
        Route("/api/sessions/{session_id}", delete_session, methods=["DELETE"]),
        Route("/api/sessions/{session_id}/messages", send_message, methods=["POST"]),
        Route("/api/sessions/{session_id}/cancel", cancel_session, methods=["POST"]),
        Route("/api/tools", list_tools, methods=["GET"]),
    ]

    return Starlette(
        routes=routes,
        exception_handlers={AgentError: agent_error},
        lifespan=lifespan,
    )


def run_server(service: AgentService, host: str = "127.0.0.1", port: int = 8080) -> None:
    """Run the API server."""
    import uvicorn

    uvicorn.run(create_app(service), host=host, port=port)
