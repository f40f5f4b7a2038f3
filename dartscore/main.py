from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging
from fastapi import FastAPI
from contextlib import asynccontextmanager

from dartscore.crud import CreateData
from dartscore.db import engine
from dartscore.exceptions import BackendError
from dartscore.routers import game
from dartscore.load_secrets import room_ttl_hours

scheduler = AsyncIOScheduler()
logging.basicConfig(level=logging.INFO)


@asynccontextmanager
async def lifespan(app):
    """Create the tables and start closing expired rooms.
    This function is called to start the server.
    """
    await CreateData.create_table(engine)

    # If the room is older than the ttl, close it
    scheduler.add_job(
        game.game_service.close_expired_rooms,
        "interval",
        hours=1,
        kwargs={"ttl_hours": room_ttl_hours},
    )
    scheduler.start()
    logging.info("Start Server")
    try:
        yield
    finally:
        scheduler.shutdown()
        await game.redis.aclose()
        logging.info("Stop Server")


app = FastAPI(lifespan=lifespan)
app.add_exception_handler(BackendError, game.backend_error_handler)
app.include_router(game.game_router)
