from datetime import timedelta
from typing import Optional

import redis

from .config import settings
from .models import SessionState
from .store import translate_redis_errors

redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)


def get_redis():
    return redis_client


class SessionStateCache:
    """Live per-respondent state, kept with a sliding expiry."""

    KEY = "survey:state:{}"

    def __init__(self, client: redis.Redis, timeout_minutes: Optional[int] = None):
        self.client = client
        self.timeout = timedelta(
            minutes=timeout_minutes or settings.SESSION_TIMEOUT_MINUTES
        )

    @translate_redis_errors
    def get(self, session_id: str) -> Optional[SessionState]:
        raw = self.client.get(self.KEY.format(session_id))
        if not raw:
            return None
        return SessionState.model_validate_json(raw)

    @translate_redis_errors
    def save(self, state: SessionState) -> None:
        self.client.set(
            self.KEY.format(state.session_id),
            state.model_dump_json(by_alias=True),
            ex=self.timeout,
        )

    @translate_redis_errors
    def delete(self, session_id: str) -> None:
        self.client.delete(self.KEY.format(session_id))
