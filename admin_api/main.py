from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from admin_api.router import register_error_handlers, router
from container import EngineContainer


def create_app(container: EngineContainer) -> FastAPI:
    """Build the admin API around a wired engine."""
    app = FastAPI(
        title="Credit Risk & Settlement Admin API",
        description="Operator access to credit profiles, risk alerts, settlements and reconciliation.",
        version="1.0.0",
    )
    app.state.container = container

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    app.include_router(router)

    @app.get("/")
    def root():
        return {"status": "ok", "engine_running": container.is_running}

    return app
