from fastapi import FastAPI

from .admin import admin_router, bind_orchestrator, router


def create_app(orchestrator=None):
    app = FastAPI(title="SentinelFlow Decision Service")
    app.include_router(router)
    app.include_router(admin_router, prefix="/admin")
    if orchestrator is not None:
        bind_orchestrator(orchestrator)
    return app


def create_default_app():
    """Build an orchestrator from settings and set it up on startup."""
    from .config import get_settings
    from .logging_setup import setup_logging
    from .orchestrator import SentinelOrchestrator

    cfg = get_settings()
    setup_logging(cfg.LOG_DIR or None, cfg.LOG_LEVEL)
    orchestrator = SentinelOrchestrator(cfg)
    app = create_app(orchestrator)

    @app.on_event("startup")
    async def _startup():
        await orchestrator.setup()

    @app.on_event("shutdown")
    async def _shutdown():
        await orchestrator.close()

    return app


# convenience for running locally
if __name__ == '__main__':
    import uvicorn
    uvicorn.run(create_default_app(), host='0.0.0.0', port=8001)
