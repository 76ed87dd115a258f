from contextlib import asynccontextmanager
from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, FastAPI
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.cors import CORSMiddleware

from campus_market.core.config import settings
from campus_market.core.errors import register_exception_handlers
from campus_market.db.session import close_db_connection, get_db, init_db
from campus_market.routers import admin, auth, orders, payments, products, reports, uploads, wishlist

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        await init_db()
        logger.info("Database connection verified")
    except Exception:
        logger.exception("Database initialisation failed; queries will fail until it is reachable")
    yield
    await close_db_connection()


def create_app() -> FastAPI:
    app = FastAPI(title="Campus Market API", lifespan=lifespan)

    # Every route lives under /api
    api_router = APIRouter(prefix="/api")
    for module in (auth, products, orders, payments, wishlist, reports, uploads, admin):
        api_router.include_router(module.router)
    app.include_router(api_router)

    @app.get("/health")
    async def health(db: AsyncSession = Depends(get_db)):
        timestamp = datetime.now(timezone.utc).isoformat()
        try:
            await db.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Health check failed: {str(e)}")
            return JSONResponse(
                status_code=503,
                content={"status": "error", "database": "disconnected", "timestamp": timestamp},
            )
        return {"status": "ok", "database": "connected", "timestamp": timestamp}

    register_exception_handlers(app)

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    return app


app = create_app()
