import copy
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from functools import wraps
from typing import Dict, List, Sequence

from redis import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from .errors import SessionNotFoundError, StoreUnavailableError
from .models import QuestionResponse, SessionProgress, SessionRecord, UserInfo, utcnow

logger = logging.getLogger(__name__)


def _sort_key(response: QuestionResponse):
    return (response.is_attention_check, response.position, response.question_id)


class SurveyStore(ABC):
    @abstractmethod
    def create_session(self, user_info: UserInfo, total_questions: int) -> SessionRecord:
        pass

    @abstractmethod
    def get_session(self, session_id: str) -> SessionRecord:
        pass

    @abstractmethod
    def update_progress(self, session_id: str, progress: SessionProgress) -> SessionProgress:
        pass

    @abstractmethod
    def mark_complete(self, session_id: str) -> SessionRecord:
        pass

    @abstractmethod
    def save_response(self, response: QuestionResponse) -> bool:
        pass

    @abstractmethod
    def list_responses(self, session_id: str) -> List[QuestionResponse]:
        pass

    def save_responses(self, session_id: str, responses: Sequence[QuestionResponse]) -> List[bool]:
        """Upsert several responses; one flag per response telling whether it was new."""
        self.get_session(session_id)
        return [
            self.save_response(response.model_copy(update={"session_id": session_id}))
            for response in responses
        ]

    @staticmethod
    def new_record(user_info: UserInfo, total_questions: int) -> SessionRecord:
        return SessionRecord(
            session_id=str(uuid.uuid4()),
            user_info=user_info,
            progress=SessionProgress(total_questions=total_questions),
        )


# --- In-memory implementation ---
class InMemorySurveyStore(SurveyStore):
    def __init__(self) -> None:
        self._sessions: Dict[str, SessionRecord] = {}
        self._responses: Dict[str, Dict[str, QuestionResponse]] = {}
        self._lock = threading.RLock()

    def create_session(self, user_info, total_questions):
        record = self.new_record(user_info, total_questions)
        with self._lock:
            self._sessions[record.session_id] = record
            self._responses[record.session_id] = {}
        return copy.deepcopy(record)

    def get_session(self, session_id):
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                raise SessionNotFoundError(session_id)
            return copy.deepcopy(record)

    def update_progress(self, session_id, progress):
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                raise SessionNotFoundError(session_id)
            record.progress = copy.deepcopy(progress)
            record.last_active_at = utcnow()
            return copy.deepcopy(record.progress)

    def mark_complete(self, session_id):
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None:
                raise SessionNotFoundError(session_id)
            record.is_completed = True
            record.last_active_at = utcnow()
            return copy.deepcopy(record)

    def save_response(self, response):
        with self._lock:
            if response.session_id not in self._sessions:
                raise SessionNotFoundError(response.session_id)
            stored = self._responses[response.session_id]
            existing = stored.get(response.question_id)
            now = utcnow()
            stored[response.question_id] = response.model_copy(
                update={
                    "created_at": existing.created_at if existing else now,
                    "updated_at": now,
                },
                deep=True,
            )
            return existing is None

    def list_responses(self, session_id):
        with self._lock:
            if session_id not in self._sessions:
                raise SessionNotFoundError(session_id)
            return sorted(
                (copy.deepcopy(r) for r in self._responses[session_id].values()), key=_sort_key
            )


# --- Redis implementation ---
def translate_redis_errors(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis unavailable during {func.__name__}: {e}")
            raise StoreUnavailableError(str(e)) from e

    return wrapper


class RedisSurveyStore(SurveyStore):
    SESSION_KEY = "survey:session:{}"
    RESPONSES_KEY = "survey:responses:{}"

    def __init__(self, client: Redis):
        self.client = client

    def _load(self, session_id: str) -> SessionRecord:
        raw = self.client.get(self.SESSION_KEY.format(session_id))
        if not raw:
            raise SessionNotFoundError(session_id)
        return SessionRecord.model_validate_json(raw)

    def _dump(self, record: SessionRecord) -> None:
        self.client.set(
            self.SESSION_KEY.format(record.session_id), record.model_dump_json(by_alias=True)
        )

    @translate_redis_errors
    def create_session(self, user_info, total_questions):
        record = self.new_record(user_info, total_questions)
        self._dump(record)
        logger.info(f"Created session record {record.session_id}")
        return record

    @translate_redis_errors
    def get_session(self, session_id):
        return self._load(session_id)

    @translate_redis_errors
    def update_progress(self, session_id, progress):
        record = self._load(session_id)
        record.progress = progress
        record.last_active_at = utcnow()
        self._dump(record)
        return record.progress

    @translate_redis_errors
    def mark_complete(self, session_id):
        record = self._load(session_id)
        record.is_completed = True
        record.last_active_at = utcnow()
        self._dump(record)
        return record

    @translate_redis_errors
    def save_response(self, response):
        if not self.client.exists(self.SESSION_KEY.format(response.session_id)):
            raise SessionNotFoundError(response.session_id)
        key = self.RESPONSES_KEY.format(response.session_id)
        existing = self.client.hget(key, response.question_id)
        now = utcnow()
        created_at = QuestionResponse.model_validate_json(existing).created_at if existing else now
        document = response.model_copy(update={"created_at": created_at, "updated_at": now})
        # HSET on a single field is the atomic upsert for (session, question id).
        return bool(self.client.hset(key, response.question_id, document.model_dump_json(by_alias=True)))

    @translate_redis_errors
    def list_responses(self, session_id):
        self._load(session_id)
        raw = self.client.hgetall(self.RESPONSES_KEY.format(session_id))
        return sorted(
            (QuestionResponse.model_validate_json(v) for v in raw.values()), key=_sort_key
        )
