import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .db import Base, engine, get_db, ensure_schema
from .cleanup import abandon_idle_sessions
from .errors import TabooError
from .settings import settings
from .routers import auth
from .routers import taboo

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(title="Lingo Taboo API")
app.include_router(auth.router)
app.include_router(taboo.router)


@app.exception_handler(TabooError)
async def taboo_error_handler(request: Request, exc: TabooError):
	return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


@app.get("/info")
def root():
	return {"status": "ok", "gemini_configured": bool(settings.gemini_api_key)}


async def _run_idle_sweep() -> None:
	db = next(get_db())
	try:
		await abandon_idle_sessions(db)
	except Exception:
		logger.exception("Idle session sweep failed")
	finally:
		db.close()


async def _cleanup_watcher():
	# Startup run happens in startup_event; then daily
	while True:
		await asyncio.sleep(24 * 60 * 60)
		await _run_idle_sweep()


@app.on_event("startup")
async def startup_event():
	Base.metadata.create_all(bind=engine)
	try:
		ensure_schema()
	except Exception:
		logger.exception("Schema upgrade failed")
	if settings.taboo_idle_abandon_hours > 0:
		await _run_idle_sweep()
		asyncio.create_task(_cleanup_watcher())
