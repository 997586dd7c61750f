import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from config import settings

logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("🌕 Nightfall backend starting up...")
    if not settings.gemini_api_key:
        logger.warning("GEMINI_API_KEY not set — AI players will pick at random and TTS is off")
    yield
    session.reset()
    logger.info("Backend shutting down.")


app = FastAPI(
    title="Nightfall: Werewolf",
    version="0.1.0",
    description="One human against AI players in a narrated game of Werewolf — powered by Gemini",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.get("/health")
async def health_check():
    return {"status": "ok", "service": "nightfall-werewolf", "version": "0.1.0"}


from routers.game_router import router as game_router
from routers.ws_router import router as ws_router, session

app.include_router(game_router, prefix="/api")
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
