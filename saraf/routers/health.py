from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health", summary="Liveness and storage check")
def health(request: Request):
    services = request.app.state.services
    db = services.database
    storage_ok = db.ping() if db is not None else True
    return {
        "status": "ok" if storage_ok else "degraded",
        "version": services.settings.version,
        "storage": services.backend,
    }
