import os


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, default))


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    PROJECT_NAME: str = "cultural-survey"
    DEBUG: bool = _env_bool("SURVEY_DEBUG", False)
    LOG_DIR: str = os.getenv("SURVEY_LOG_DIR", "log")
    LOG_FILE: str = "cultural_survey.log"
    LOG_TO_FILE: bool = _env_bool("SURVEY_LOG_TO_FILE", True)
    REDIS_URL: str = os.getenv("SURVEY_REDIS_URL", "redis://localhost:6379/0")
    QUESTIONS_PATH: str = os.getenv("SURVEY_QUESTIONS_PATH", "questions/questions.json")
    SESSION_COOKIE_NAME: str = "survey_session_id"
    SESSION_TIMEOUT_MINUTES: int = _env_int("SURVEY_SESSION_TIMEOUT_MINUTES", 24 * 60)

    # Overall wall-clock limit from session start; 0 disables the deadline.
    SURVEY_TIME_LIMIT_MINUTES: int = _env_int("SURVEY_TIME_LIMIT_MINUTES", 0)
    TIME_WARNING_MINUTES: int = 10
    TIME_CRITICAL_MINUTES: int = 2

    # Quality and integrity thresholds
    ATTENTION_CHECK_INTERVAL: int = _env_int("SURVEY_ATTENTION_CHECK_INTERVAL", 7)
    MIN_ANSWER_LENGTH: int = _env_int("SURVEY_MIN_ANSWER_LENGTH", 10)
    MAX_ANSWER_LENGTH: int = 5000
    FAST_RESPONSE_SECONDS: int = _env_int("SURVEY_FAST_RESPONSE_SECONDS", 8)
    SUSPICIOUS_RATE_PERCENT: int = _env_int("SURVEY_SUSPICIOUS_RATE_PERCENT", 30)
    PATTERN_MIN_RESPONSES: int = 5
    REAL_TIME_FEEDBACK: bool = _env_bool("SURVEY_REAL_TIME_FEEDBACK", True)
    REQUIRE_CULTURAL_COMMONSENSE: bool = _env_bool("SURVEY_REQUIRE_CULTURAL_COMMONSENSE", True)

    PROGRESS_SYNC_ATTEMPTS: int = 3
    PROGRESS_SYNC_BACKOFF_SECONDS: float = 0.2


settings = Settings()
