class SurveyError(Exception):
    """Base class for survey domain errors."""


class AnswerValidationError(SurveyError, ValueError):
    pass


class InvalidPositionError(SurveyError, ValueError):
    pass


class QuestionTreeError(SurveyError, ValueError):
    pass


class SessionNotFoundError(SurveyError, KeyError):
    def __init__(self, session_id: str):
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session '{self.session_id}' not found"


class StoreUnavailableError(SurveyError):
    """The persistence backend could not be reached."""


class DuplicateResponseError(SurveyError):
    """A response for (session, questionId) already exists."""


class SessionExpiredError(SurveyError):
    pass


class InterventionPendingError(SurveyError):
    """Progress is blocked until the respondent acknowledges a quality warning."""


class AttentionCheckPendingError(SurveyError):
    pass
