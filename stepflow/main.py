import asyncio
import json
import logging
from typing import List, Optional
from urllib.parse import quote, urljoin, urlparse

import httpx
from fastapi import FastAPI, Request, Response, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, RedirectResponse, StreamingResponse
from starlette.background import BackgroundTask

from stepflow.automation.errors import (
    AutomationAlreadyRunning,
    AutomationNotFound,
    BackendUnavailable,
    StepflowError,
)
from stepflow.automation.models import (
    Automation,
    AutomationCreate,
    AutomationUpdate,
    ExecutionStatus,
    HealthResponse,
    MessageResponse,
)
from stepflow.automation.runner import AutomationRunner
from stepflow.browser.control_session import CdpConnector
from stepflow.browser.supervisor import BrowserSupervisor
from stepflow.config import settings
from stepflow.logs import configure_logging
from stepflow.storage import AutomationStore
from stepflow.websocket_manager import WebSocketManager

logger = logging.getLogger(__name__)

# Upstream headers not forwarded: transfer framing, and those that block iframe embedding
_HOP_HEADERS = {
    "connection",
    "content-length",
    "keep-alive",
    "transfer-encoding",
    "x-frame-options",
    "content-security-policy",
}


def create_app(
    store: Optional[AutomationStore] = None,
    supervisor: Optional[BrowserSupervisor] = None,
    connector: Optional[CdpConnector] = None,
    manager: Optional[WebSocketManager] = None,
    proxy_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    configure_logging(settings.log_level, settings.log_format)

    app = FastAPI(title="Stepflow")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = store or AutomationStore(settings.database_path)
    supervisor = supervisor or BrowserSupervisor()
    connector = connector or CdpConnector()
    manager = manager or WebSocketManager()
    runner = AutomationRunner(store, supervisor, connector, events=manager)

    app.state.store = store
    app.state.supervisor = supervisor
    app.state.runner = runner
    app.state.manager = manager

    @app.on_event("startup")
    async def startup_event():
        if not await supervisor.is_available():
            logger.warning(
                "Control endpoint %s is not reachable; automations will not start until it is",
                settings.control_endpoint,
            )

    @app.on_event("shutdown")
    async def shutdown_event():
        await runner.shutdown()
        await connector.aclose()

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(_request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        loc = [str(part) for part in first.get("loc", ()) if part != "body"]
        return JSONResponse(
            status_code=400,
            content={"message": first.get("msg", "Invalid request"), "field": ".".join(loc)},
        )

    @app.exception_handler(StepflowError)
    async def stepflow_error_handler(_request: Request, exc: StepflowError):
        status_code = 500
        if isinstance(exc, AutomationNotFound):
            status_code = 404
        elif isinstance(exc, AutomationAlreadyRunning):
            status_code = 409
        elif isinstance(exc, BackendUnavailable):
            status_code = 503
        return JSONResponse(status_code=status_code, content={"message": exc.message})

    # --- Automations CRUD ---

    @app.get("/api/automations", response_model=List[Automation])
    def list_automations():
        return store.list_automations()

    @app.get("/api/automations/{automation_id}", response_model=Automation)
    def get_automation(automation_id: int):
        automation = store.get_automation(automation_id)
        if automation is None:
            raise AutomationNotFound(automation_id)
        return automation

    @app.post("/api/automations", response_model=Automation, status_code=201)
    def create_automation(payload: AutomationCreate):
        return store.create_automation(payload)

    @app.put("/api/automations/{automation_id}", response_model=Automation)
    def update_automation(automation_id: int, payload: AutomationUpdate):
        return store.update_automation(automation_id, payload)

    @app.delete("/api/automations/{automation_id}", status_code=204)
    def delete_automation(automation_id: int):
        if not store.delete_automation(automation_id):
            raise AutomationNotFound(automation_id)
        return Response(status_code=204)

    # --- Automation actions ---

    @app.post("/api/automations/{automation_id}/start", response_model=MessageResponse)
    async def start_automation(automation_id: int):
        await runner.start(automation_id)
        return MessageResponse(message="Automation started")

    @app.post("/api/automations/{automation_id}/stop", response_model=MessageResponse)
    async def stop_automation(automation_id: int):
        if await asyncio.to_thread(store.get_automation, automation_id) is None:
            raise AutomationNotFound(automation_id)
        cancelled = runner.cancel(automation_id)
        await asyncio.to_thread(store.set_status, automation_id, ExecutionStatus.STOPPED)
        if cancelled:
            return MessageResponse(message="Stop requested; the run ends at its next step")
        return MessageResponse(message="Automation stopped")

    # --- System ---

    @app.get("/api/health", response_model=HealthResponse)
    async def health():
        return HealthResponse(status="ok", browser=await supervisor.status())

    @app.get("/api/proxy")
    async def proxy(url: Optional[str] = None):
        if not url:
            return PlainTextResponse("Missing url", status_code=400)
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            return PlainTextResponse(
                "Invalid URL format. Please include http:// or https://", status_code=400
            )

        client = httpx.AsyncClient(timeout=settings.proxy_timeout_s, transport=proxy_transport)
        try:
            upstream = await client.send(client.build_request("GET", url), stream=True)
        except httpx.HTTPError as exc:
            await client.aclose()
            logger.error("Proxy error for %s: %s", url, exc)
            return JSONResponse(
                status_code=502,
                content={"error": "Could not connect to the target website. Check the URL and try again."},
            )

        async def close_upstream() -> None:
            await upstream.aclose()
            await client.aclose()

        location = upstream.headers.get("location")
        if upstream.is_redirect and location:
            await close_upstream()
            return RedirectResponse(f"/api/proxy?url={quote(urljoin(url, location), safe='')}")

        # Raw bytes are passed through, so content-encoding stays with them
        headers = {k: v for k, v in upstream.headers.items() if k.lower() not in _HOP_HEADERS}
        return StreamingResponse(
            upstream.aiter_raw(),
            status_code=upstream.status_code,
            headers=headers,
            background=BackgroundTask(close_upstream),
        )

    @app.websocket("/ws")
    async def websocket_endpoint(ws: WebSocket):
        await manager.connect(ws)
        await manager.send_event("LOG", {"level": "info", "message": "Connected"})

        try:
            while True:
                raw = await ws.receive_text()
                try:
                    message = json.loads(raw)
                except ValueError:
                    await manager.send_log("warn", "Ignoring message that is not valid JSON")
                    continue
                if not isinstance(message, dict):
                    await manager.send_log("warn", "Ignoring message that is not a JSON object")
                    continue

                msg_type = message.get("type")
                automation_id = message.get("automation_id")
                if msg_type == "START_AUTOMATION" and isinstance(automation_id, int):
                    try:
                        await runner.start(automation_id)
                    except StepflowError as exc:
                        await manager.send_log("error", exc.message, automation_id)
                elif msg_type == "STOP_AUTOMATION" and isinstance(automation_id, int):
                    if not runner.cancel(automation_id):
                        await manager.send_log("warn", "Automation is not running", automation_id)
                else:
                    await manager.send_log("warn", f"Unknown message: {msg_type}")
        except WebSocketDisconnect:
            pass
        finally:
            await manager.disconnect(ws)

    return app


def main() -> None:
    import uvicorn

    uvicorn.run("stepflow.main:create_app", factory=True, host="127.0.0.1", port=5000)


if __name__ == "__main__":
    main()
