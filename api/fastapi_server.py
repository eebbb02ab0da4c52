import json
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from config import config
from config.utils import as_int
from monitoring.logging_utils import setup_logging


logger = logging.getLogger(__name__)


def create_app(service=None) -> FastAPI:
    """Build the HTTP app around a ``RelayService``; one is built from config when omitted."""
    if service is None:
        from main import RelayService
        service = RelayService.from_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await service.start()
        try:
            yield
        finally:
            await service.stop()

    app = FastAPI(title="TradingView Alert Relay", version="1.0.0", lifespan=lifespan)
    app.state.service = service

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(config.api.get('cors_origins', ["*"])),
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.get("/", response_class=PlainTextResponse)
    async def health():
        return "OK"

    @app.get("/favicon.ico")
    async def favicon():
        return Response(content=b"", media_type="image/x-icon")

    @app.get("/accounts")
    async def accounts():
        return JSONResponse(await service.accounts())

    @app.post("/", response_class=PlainTextResponse)
    async def alert(request: Request):
        body = await request.body()
        payload: Optional[object]
        try:
            payload = json.loads(body) if body else None
        except ValueError:
            logger.error("Alert body is not valid JSON: %r", body[:200])
            payload = None
        return await service.handle_alert(payload)

    return app


if __name__ == "__main__":
    import uvicorn
    setup_logging(config.monitoring.get('log_level', 'INFO'))
    uvicorn.run(
        create_app(),
        host=config.api.get('host', '0.0.0.0'),
        port=as_int(config.api.get('port'), 3000),
        log_level="info"
    )
