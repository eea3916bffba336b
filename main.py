import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import settings
from cart import router as cart_router
from catalog import router as catalog_router
from database import db, ensure_indexes
from errors import register_error_handlers
from orders import router as orders_router
from payments import router as payments_router
from users import router as users_router

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if db is not None:
        ensure_indexes(db)
    else:
        logger.warning("DATABASE_URL not set, database routes will fail")
    yield


app = FastAPI(title="Storefront API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
)

register_error_handlers(app)

for router in (users_router, catalog_router, cart_router, orders_router, payments_router):
    app.include_router(router, prefix=settings.API_PREFIX)


# Routes
@app.get("/")
def root():
    return {"message": "Storefront API is running"}


@app.get(f"{settings.API_PREFIX}/health")
def health():
    return {"success": True, "message": "Server is healthy"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.PORT)
