import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from twofactor.config import settings
from twofactor.exception_handlers import register_exception_handlers
from twofactor.routes import router as two_factor_router

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    app = FastAPI(title=settings.app_name, version=settings.app_version, debug=settings.debug)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)
    app.include_router(two_factor_router)

    if settings.debug:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)  # Logs SQL statements

    logger.info(f"{settings.app_name} started ({settings.environment})")
    return app


app = create_app()
