from fastapi import FastAPI, WebSocket, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator
from typing import List
from contextlib import asynccontextmanager
import re
import logging
import uvicorn

import config
config.setup_logging()

from ai_engine import ai_engine, AiHelpError
from game_engine import TriviaGame
from questions import load_questions
from socket_manager import socket_manager

logger = logging.getLogger(__name__)

game = TriviaGame(load_questions(config.QUESTIONS_FILE), gateway=socket_manager)
socket_manager.game = game


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting trivia server")
    game.start()
    yield
    game.stop()
    logger.info("Shutting down trivia server")


app = FastAPI(title="Live Trivia Backend", lifespan=lifespan)


class AiQuestion(BaseModel):
    text: str
    choices: List[str] = []

    @field_validator('text')
    @classmethod
    def validate_text(cls, v: str) -> str:
        v = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', v).strip()
        if not v:
            raise ValueError('Question text is required')
        return v


class AiHelpRequest(BaseModel):
    question: AiQuestion


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": "Missing question text"})


@app.post("/api/ai-help")
async def ai_help(request: AiHelpRequest):
    try:
        answer = await ai_engine.ask(request.question.text, request.question.choices)
    except AiHelpError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))
    return {"answer": answer}


@app.get("/game/state")
async def game_state():
    return game.snapshot()


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await socket_manager.connect(websocket)


# Configure CORS
if config.ALLOWED_ORIGINS.strip():
    origins = [o.strip() for o in config.ALLOWED_ORIGINS.split(",")]
    socket_manager.allowed_origins = origins
else:
    origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type"],
)


@app.get("/")
async def root():
    return {"message": "Trivia server is running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
