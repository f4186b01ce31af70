from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.router import api_router
from core.config import settings
from core.errors import ClinicalError
from core.logging import get_logger, setup_logging
from database.session import init_db

logger = get_logger(__name__)


def create_app() -> FastAPI:
    setup_logging(settings.log_level, settings.log_file)
    app = FastAPI(title=settings.app_name)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_origin],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(ClinicalError)
    async def clinical_error_handler(request: Request, exc: ClinicalError):
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/health")
    def health():
        return {"status": "ok", "env": settings.env}

    return app


app = create_app()


@app.on_event("startup")
def _startup():
    init_db()
