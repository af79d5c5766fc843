# App factory for the opsboard realtime backend.
# `uvicorn opsboard.main:app` serves an app built from OPSBOARD_* environment settings.
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Response
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .api import activity_routes, realtime_routes, ws_routes
from .config import Settings
from .hub import RealtimeHub
from .logs import configure_logging, get_logger
from .metrics import render_latest

logger = get_logger('main')


def create_app(settings: Optional[Settings] = None, hub: Optional[RealtimeHub] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    settings.validate()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.hub.start()
        logger.info('realtime hub started (db=%s)', settings.db_path)
        try:
            yield
        finally:
            await app.state.hub.stop()

    app = FastAPI(title='opsboard realtime', version=__version__, lifespan=lifespan)
    # routes resolve the shared hub from app.state
    app.state.hub = hub or RealtimeHub(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )

    app.include_router(ws_routes.router)
    app.include_router(realtime_routes.router)
    app.include_router(activity_routes.router)

    @app.get('/api/status')
    async def status():
        return {'ok': True, 'connections': len(app.state.hub.registry), 'version': __version__}

    @app.get('/metrics')
    async def metrics():
        body, content_type = render_latest()
        return Response(content=body, media_type=content_type)

    return app


app = create_app()
