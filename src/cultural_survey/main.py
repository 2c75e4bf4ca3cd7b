import logging
import os
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from typing import Optional

import uvicorn
from fastapi import Cookie, Depends, FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from redis import Redis

from .config import settings
from .errors import (
    AnswerValidationError,
    InvalidPositionError,
    SessionExpiredError,
    SessionNotFoundError,
    StoreUnavailableError,
    SurveyError,
)
from .models import (
    AnswerRequest,
    AttentionAnswerRequest,
    BatchSaveRequest,
    JumpRequest,
    Position,
    PreviewRequest,
    QuestionTree,
    UserInfo,
)
from .quality import analyze_quality
from .questions import QuestionBankManager
from .redis_session import SessionStateCache, get_redis
from .session import SurveySession
from .store import RedisSurveyStore, SurveyStore

# --- Logging Setup ---
package_logger = logging.getLogger("cultural_survey")
package_logger.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)

if settings.LOG_TO_FILE:
    if not os.path.exists(settings.LOG_DIR):
        os.makedirs(settings.LOG_DIR)
    log_path = os.path.join(settings.LOG_DIR, settings.LOG_FILE)
    file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=3)
    file_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(levelname)s - %(message)s")
    )
    package_logger.addHandler(file_handler)


# --- Lifecycle ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    question_bank.load()
    yield


app = FastAPI(
    title=settings.PROJECT_NAME,
    debug=settings.DEBUG,
    lifespan=lifespan,
)

question_bank = QuestionBankManager(settings.QUESTIONS_PATH)


# --- Error handling ---
def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0]["msg"] if errors else "Bad request"
    return _error(message, 400)


@app.exception_handler(AnswerValidationError)
async def answer_validation_handler(request: Request, exc: AnswerValidationError):
    return _error(str(exc), 400)


@app.exception_handler(InvalidPositionError)
async def invalid_position_handler(request: Request, exc: InvalidPositionError):
    return _error(str(exc), 400)


@app.exception_handler(SessionNotFoundError)
async def session_not_found_handler(request: Request, exc: SessionNotFoundError):
    logger.info(f"Unknown session {exc.session_id!r}; clearing cookie")
    response = _error("Session not found. Please start over.", 404)
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return response


@app.exception_handler(SessionExpiredError)
async def session_expired_handler(request: Request, exc: SessionExpiredError):
    return _error(str(exc), 410)


@app.exception_handler(StoreUnavailableError)
async def store_unavailable_handler(request: Request, exc: StoreUnavailableError):
    return _error("Server error. Please try again later.", 503)


@app.exception_handler(SurveyError)
async def survey_error_handler(request: Request, exc: SurveyError):
    return _error(str(exc), 409)


# --- Dependencies ---
def get_question_tree() -> QuestionTree:
    return question_bank.get_tree()


def get_store(client: Redis = Depends(get_redis)) -> SurveyStore:
    return RedisSurveyStore(client)


def get_state_cache(client: Redis = Depends(get_redis)) -> SessionStateCache:
    return SessionStateCache(client)


def get_session_id(
    session_id: Optional[str] = Cookie(None, alias=settings.SESSION_COOKIE_NAME),
) -> Optional[str]:
    return session_id


def get_survey_session(
    session_id: Optional[str] = Depends(get_session_id),
    tree: QuestionTree = Depends(get_question_tree),
    store: SurveyStore = Depends(get_store),
    cache: SessionStateCache = Depends(get_state_cache),
) -> SurveySession:
    if not session_id:
        raise SessionNotFoundError("")
    return SurveySession.resume(session_id, tree, store, cached=cache.get(session_id))


def _snapshot(session: SurveySession) -> dict:
    state = session.state
    return {
        "sessionId": session.session_id,
        "progress": state.progress.model_dump(by_alias=True),
        "progressPercent": round(session.progress_percent(), 1),
        "estimatedTimeRemaining": session.estimated_time_remaining(),
        "interventionActive": state.intervention_active,
        "isCompleted": state.is_completed,
        "isExpired": state.is_expired,
        "item": session.current_item(),
    }


# --- Routes ---
@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/api/questions")
def get_questions(tree: QuestionTree = Depends(get_question_tree)):
    return [c.model_dump(by_alias=True) for c in tree]


@app.get("/api/questions/info")
def get_questions_info():
    return {**question_bank.info(), "placeholder": question_bank.is_placeholder}


@app.post("/api/admin/reload-questions")
def reload_questions():
    question_bank.load()
    return {"message": "Questions reloaded", "totalQuestions": question_bank.total_questions()}


@app.post("/api/quality/preview")
def preview_quality(body: PreviewRequest):
    return analyze_quality(body.answer).model_dump(by_alias=True)


@app.post("/api/sessions", status_code=201)
def create_session(
    user_info: UserInfo,
    response: Response,
    tree: QuestionTree = Depends(get_question_tree),
    store: SurveyStore = Depends(get_store),
    cache: SessionStateCache = Depends(get_state_cache),
):
    session = SurveySession.create(user_info, tree, store)
    cache.save(session.state)
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=session.session_id,
        httponly=True,
        samesite="Lax",
    )
    return {
        "sessionId": session.session_id,
        "totalQuestions": session.state.progress.total_questions,
    }


@app.get("/api/session")
def get_session(
    session: SurveySession = Depends(get_survey_session),
    cache: SessionStateCache = Depends(get_state_cache),
):
    cache.save(session.state)
    record = session.store.get_session(session.session_id)
    return {**_snapshot(session), "userInfo": record.user_info.model_dump(by_alias=True)}


@app.get("/api/session/item")
def get_current_item(
    session: SurveySession = Depends(get_survey_session),
    cache: SessionStateCache = Depends(get_state_cache),
):
    item = session.current_item()
    cache.save(session.state)
    return item


@app.get("/api/session/timer")
def get_timer(
    session: SurveySession = Depends(get_survey_session),
    cache: SessionStateCache = Depends(get_state_cache),
):
    status = session.time_status()
    cache.save(session.state)
    return status


@app.post("/api/session/answer")
def submit_answer(
    body: AnswerRequest,
    session: SurveySession = Depends(get_survey_session),
    cache: SessionStateCache = Depends(get_state_cache),
):
    try:
        result = session.submit_answer(body.answer, body.time_spent, body.cultural_commonsense)
    finally:
        # Expiry and other local transitions stick even when the submission is refused.
        cache.save(session.state)
    return {**result.model_dump(mode="json", by_alias=True), "item": session.current_item()}


@app.post("/api/session/attention-check")
def submit_attention_check(
    body: AttentionAnswerRequest,
    session: SurveySession = Depends(get_survey_session),
    cache: SessionStateCache = Depends(get_state_cache),
):
    try:
        result = session.submit_attention_check(body.answer, body.time_spent)
    finally:
        cache.save(session.state)
    return {**result.model_dump(mode="json", by_alias=True), "item": session.current_item()}


@app.post("/api/session/acknowledge")
def acknowledge_intervention(
    session: SurveySession = Depends(get_survey_session),
    cache: SessionStateCache = Depends(get_state_cache),
):
    session.acknowledge_intervention()
    cache.save(session.state)
    return _snapshot(session)


@app.post("/api/session/back")
def go_back(
    session: SurveySession = Depends(get_survey_session),
    cache: SessionStateCache = Depends(get_state_cache),
):
    session.go_back()
    cache.save(session.state)
    return _snapshot(session)


@app.post("/api/session/skip")
def skip_question(
    session: SurveySession = Depends(get_survey_session),
    cache: SessionStateCache = Depends(get_state_cache),
):
    session.skip()
    cache.save(session.state)
    return _snapshot(session)


@app.post("/api/session/jump")
def jump_to_question(
    body: JumpRequest,
    session: SurveySession = Depends(get_survey_session),
    cache: SessionStateCache = Depends(get_state_cache),
):
    target = Position(
        body.category_index, body.subcategory_index, body.topic_index, body.question_index
    )
    session.jump_to(target)
    cache.save(session.state)
    return _snapshot(session)


@app.get("/api/session/responses")
def list_responses(session: SurveySession = Depends(get_survey_session)):
    return [
        r.model_dump(mode="json", by_alias=True)
        for r in session.store.list_responses(session.session_id)
    ]


@app.post("/api/session/responses/batch", status_code=201)
def batch_save_responses(
    body: BatchSaveRequest,
    session: SurveySession = Depends(get_survey_session),
    cache: SessionStateCache = Depends(get_state_cache),
):
    created = session.save_batch(body.responses)
    cache.save(session.state)
    return {"message": "Responses saved successfully", "created": created}


@app.post("/api/reset")
def reset_session(
    response: Response,
    session_id: Optional[str] = Depends(get_session_id),
    cache: SessionStateCache = Depends(get_state_cache),
):
    if session_id:
        cache.delete(session_id)
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    return {"status": "success"}


if __name__ == "__main__":
    uvicorn.run("cultural_survey.main:app", host="0.0.0.0", port=8000, reload=settings.DEBUG)
