import asyncio
import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

import database
from admin import router as admin_router
from auth import router as auth_router
from cart import router as cart_router
from catalog import router as catalog_router
from config import LOG_LEVEL, SESSION_SWEEP_SECONDS
from errors import register_error_handlers
from gate import AccessGateMiddleware
from orders import router as orders_router
from payments import router as payments_router
from sessions import session_registry, sweep_forever
from users import router as users_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes(database.db)
    else:
        logger.warning("DATABASE_URL not set, database routes will return 503")
    sweeper = asyncio.create_task(sweep_forever(session_registry, SESSION_SWEEP_SECONDS))
    yield
    sweeper.cancel()


app = FastAPI(title="Jewelry Store API", lifespan=lifespan)

app.add_middleware(AccessGateMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

for router in (auth_router, users_router, catalog_router, cart_router, orders_router, payments_router, admin_router):
    app.include_router(router)


# Routes
@app.get("/")
def read_root():
    return {"message": "Jewelry Store API"}


@app.get("/test")
def test_database():
    db = database.db
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": [],
        "sessions": len(session_registry),
    }
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["connection_status"] = "Connected"
            response["database_url"] = "✅ Set"
            response["database_name"] = db.name
            response["collections"] = db.list_collection_names()
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
