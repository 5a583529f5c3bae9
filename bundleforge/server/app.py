from __future__ import annotations

from fastapi import FastAPI

from bundleforge import __version__
from bundleforge.server.modules import batches_api, build_api


def create_app() -> FastAPI:
    app = FastAPI(title="bundleforge", version=__version__)
    app.include_router(batches_api.router)
    app.include_router(build_api.router)

    @app.get("/health")
    def health() -> dict:
        return {"ok": True, "version": __version__}

    return app


__all__ = ["create_app"]
