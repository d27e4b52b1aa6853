from fastapi import FastAPI, Depends, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import AliasChoices, BaseModel, Field, ValidationInfo, field_validator
from typing import List, Optional
from collections import deque
from contextlib import asynccontextmanager
import hmac
import secrets
import logging
import uvicorn

import config
config.setup_logging()

from errors import QuizError, RateLimited
from game_manager import AdvanceOutcome, game_manager
from question_store import sanitize_text

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting trivia backend")
    yield
    logger.info("Shutting down trivia backend")


app = FastAPI(title="Live Trivia Backend", lifespan=lifespan)


@app.exception_handler(QuizError)
async def quiz_error_handler(request: Request, exc: QuizError):
    body = {"detail": exc.message, "error": type(exc).__name__}
    headers = None
    if isinstance(exc, RateLimited):
        body["retryAfter"] = exc.retry_after
        headers = {"Retry-After": str(max(1, int(round(exc.retry_after))))}
    return JSONResponse(status_code=exc.status_code, content=body, headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Malformed request bodies are input errors like any other ValidationError
    first = exc.errors()[0] if exc.errors() else {}
    message = str(first.get("msg", "Invalid request")).removeprefix("Value error, ")
    return JSONResponse(status_code=400, content={"detail": message, "error": "ValidationError"})


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    if config.SECURITY_HEADERS:
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
    return response


# --- Moderator auth ---

# Tokens issued by /api/moderator/login; oldest fall off once the cap is hit
moderator_tokens: deque = deque(maxlen=config.MAX_MODERATOR_TOKENS)


def require_moderator(x_moderator_token: str = Header(default="")) -> str:
    if not x_moderator_token or not any(
        hmac.compare_digest(x_moderator_token, token) for token in moderator_tokens
    ):
        raise HTTPException(status_code=401, detail="Moderator login required")
    return x_moderator_token


class LoginRequest(BaseModel):
    username: str = ""
    password: str = ""


class QuestionRequest(BaseModel):
    text: str = ""
    optionA: str = ""
    optionB: str = ""
    optionC: str = ""
    optionD: str = ""
    correctAnswer: str = ""

    @field_validator('text')
    @classmethod
    def validate_text(cls, v: str) -> str:
        v = sanitize_text(v)
        if not v or len(v) > config.MAX_QUESTION_TEXT_LENGTH:
            raise ValueError(f'Question text must be 1-{config.MAX_QUESTION_TEXT_LENGTH} characters')
        return v

    @field_validator('optionA', 'optionB', 'optionC', 'optionD')
    @classmethod
    def validate_option(cls, v: str, info: ValidationInfo) -> str:
        v = sanitize_text(v)
        if not v or len(v) > config.MAX_OPTION_LENGTH:
            raise ValueError(f'Option {info.field_name[-1]} must be 1-{config.MAX_OPTION_LENGTH} characters')
        return v

    @field_validator('correctAnswer')
    @classmethod
    def validate_correct_answer(cls, v: str) -> str:
        if v not in config.OPTION_KEYS:
            raise ValueError('Correct answer must be A, B, C, or D')
        return v


class AnswerRequest(BaseModel):
    playerId: str = ""
    choice: str = Field(default="", validation_alias=AliasChoices("choice", "answer"))

    @field_validator('playerId')
    @classmethod
    def validate_player_id(cls, v: str) -> str:
        if not v or len(v) > config.MAX_PLAYER_ID_LENGTH:
            raise ValueError(f'Player ID must be 1-{config.MAX_PLAYER_ID_LENGTH} characters')
        return v

    @field_validator('choice')
    @classmethod
    def validate_choice(cls, v: str) -> str:
        if v not in config.OPTION_KEYS:
            raise ValueError('Answer must be A, B, C, or D')
        return v


# --- Player endpoints ---

@app.post("/api/join")
async def join():
    player_id = game_manager.join()
    return {"playerId": player_id}


@app.post("/api/answer")
async def submit_answer(request: AnswerRequest):
    choice = game_manager.submit(request.playerId, request.choice)
    return {"success": True, "choice": choice, "message": "Answer submitted successfully!"}


@app.get("/api/game-state")
async def game_state(playerId: Optional[str] = None):
    return game_manager.player_view(playerId)


# --- Moderator endpoints ---

@app.post("/api/moderator/login")
async def moderator_login(request: LoginRequest):
    if not request.username or not request.password:
        raise HTTPException(status_code=400, detail="Username and password are required")
    valid_user = hmac.compare_digest(request.username, config.MODERATOR_USERNAME)
    valid_password = hmac.compare_digest(request.password, config.MODERATOR_PASSWORD)
    if not (valid_user and valid_password):
        logger.warning("Rejected moderator login for '%s'", request.username[:50])
        raise HTTPException(status_code=401, detail="Invalid credentials")
    token = secrets.token_urlsafe(32)
    moderator_tokens.append(token)
    logger.info("Moderator logged in")
    return {"success": True, "token": token, "message": "Login successful"}


@app.post("/api/moderator/add-question")
async def add_question(request: QuestionRequest, _: str = Depends(require_moderator)):
    options = {"A": request.optionA, "B": request.optionB,
               "C": request.optionC, "D": request.optionD}
    question, total = game_manager.add_question(request.text, options, request.correctAnswer)
    return {
        "success": True,
        "questionId": question.id,
        "totalQuestions": total,
        "message": f"Question {total} added successfully",
    }


@app.delete("/api/moderator/delete-question/{question_id}")
async def delete_question(question_id: str, _: str = Depends(require_moderator)):
    remaining = game_manager.delete_question(question_id)
    return {"success": True, "message": "Question deleted successfully", "totalQuestions": remaining}


@app.post("/api/moderator/start-game")
async def start_game(_: str = Depends(require_moderator)):
    total = game_manager.start()
    return {"success": True, "message": "Game started", "totalQuestions": total}


@app.post("/api/moderator/next-question")
async def next_question(_: str = Depends(require_moderator)):
    outcome = game_manager.advance()
    if outcome is AdvanceOutcome.NO_MORE_QUESTIONS:
        return JSONResponse(status_code=409, content={
            "detail": "No more questions available. Game complete!",
            "gameComplete": True,
        })
    view = game_manager.moderator_view()
    return {
        "success": True,
        "currentQuestionIndex": view["currentQuestionIndex"],
        "totalQuestions": view["totalQuestions"],
        "message": f"Advanced to question {view['currentQuestionNumber']} of {view['totalQuestions']}",
    }


@app.post("/api/moderator/reveal-answer")
async def reveal_answer(_: str = Depends(require_moderator)):
    result = game_manager.reveal()
    result["success"] = True
    result["message"] = (f"Answer revealed: {result['correctAnswer']}. "
                         f"{result['totalResponses']} players responded.")
    return result


@app.post("/api/moderator/end-game")
async def end_game(_: str = Depends(require_moderator)):
    total_players = game_manager.end()
    return {"success": True, "message": "Game ended successfully", "totalPlayers": total_players}


@app.get("/api/moderator/status")
async def moderator_status(_: str = Depends(require_moderator)):
    return game_manager.moderator_view()


# Configure CORS
origins: List[str] = [o.strip() for o in config.ALLOWED_ORIGINS.split(",") if o.strip()]
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["Content-Type", "X-Moderator-Token"],
    )


@app.get("/")
async def root():
    return {"message": "Trivia server is running"}


@app.get("/health")
async def health():
    return {"status": "healthy"}


if __name__ == "__main__":
    uvicorn.run("main:app", host=config.HOST, port=config.PORT, reload=True)
