import logging
from typing import Dict, Optional

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import settings
from .errors import StoreUnavailableError
from .models import SessionProgress
from .store import SurveyStore

logger = logging.getLogger(__name__)


class ProgressSync:
    """Write-behind for session progress.

    The caller's in-memory progress stays authoritative. Each push is retried
    with exponential backoff; if every attempt fails the latest progress is
    parked and carried by the next push or ``flush``.
    """

    def __init__(
        self,
        store: SurveyStore,
        attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ):
        self.store = store
        self.attempts = attempts or settings.PROGRESS_SYNC_ATTEMPTS
        self.backoff_seconds = (
            settings.PROGRESS_SYNC_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )
        self.pending: Dict[str, SessionProgress] = {}

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.backoff_seconds, max=self.backoff_seconds * 8),
            retry=retry_if_exception_type(StoreUnavailableError),
        )

    def push(self, session_id: str, progress: SessionProgress) -> bool:
        snapshot = progress.model_copy(deep=True)
        try:
            for attempt in self._retrying():
                with attempt:
                    self.store.update_progress(session_id, snapshot)
        except RetryError as e:
            self.pending[session_id] = snapshot
            logger.warning(
                f"Progress update for {session_id} failed after {self.attempts} attempts; "
                f"keeping it for the next write: {e.last_attempt.exception()}"
            )
            return False
        self.pending.pop(session_id, None)
        return True

    def flush(self, session_id: str) -> bool:
        progress = self.pending.get(session_id)
        if progress is None:
            return True
        return self.push(session_id, progress)

    def has_pending(self, session_id: str) -> bool:
        return session_id in self.pending
