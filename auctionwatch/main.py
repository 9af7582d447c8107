import os
from dotenv import load_dotenv
from fastapi import FastAPI
from auctionwatch.api.routes import router as api_router
from auctionwatch.providers import default_enricher
from auctionwatch.scheduler import UpdateScheduler
from auctionwatch.utils import logger

load_dotenv()
ENABLE_SCHEDULER = os.getenv("ENABLE_SCHEDULER", "0") == "1"

# create FastAPI instance
app = FastAPI(title="auctionwatch")
app.include_router(api_router)
app.state.updates = UpdateScheduler(analytics=default_enricher())


@app.on_event("startup")
def on_startup_start_scheduler():
    if ENABLE_SCHEDULER:
        app.state.updates.start(run_initial=False)
    else:
        logger.info("ENABLE_SCHEDULER not set; serving status only")


@app.on_event("shutdown")
def on_shutdown_stop_scheduler():
    app.state.updates.stop()
