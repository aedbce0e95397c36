import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from safetygate.config import SafetyConfig
from safetygate.db import dispose_db, init_db
from safetygate.errors import MalformedInput
from safetygate.service import SafetyService
from safetygate.web.backend.api import router as api_router

logger = logging.getLogger(__name__)


def create_app(config: Optional[SafetyConfig] = None, service: Optional[SafetyService] = None) -> FastAPI:
    """
    Build the API app.

    The enforcement database is opened when the app starts and closed when it
    stops. Pass a service to share one session store with other surfaces.
    """
    config = config or SafetyConfig.load()
    service = service or SafetyService(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_db(Path(config.data_dir), config.db_url)
        logger.info("Enforcement database ready in %s", config.db_url or config.data_dir)
        yield
        await dispose_db()

    app = FastAPI(title="SafetyGate API", lifespan=lifespan)
    app.state.config = config
    app.state.service = service

    # Allow CORS for local tooling
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MalformedInput)
    async def malformed_input_handler(request: Request, exc: MalformedInput):
        return JSONResponse(status_code=400, content=exc.to_dict())

    app.include_router(api_router, prefix="/api")

    @app.get("/")
    def health_check():
        return {"status": "ok", "service": "safetygate", "actions": service.actions}

    return app


if __name__ == "__main__":
    import uvicorn
    cfg = SafetyConfig.load()
    uvicorn.run(create_app(cfg), host=cfg.host, port=cfg.port)
