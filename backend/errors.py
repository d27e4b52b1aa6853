"""Error taxonomy raised by the game core and translated once by the HTTP layer."""


class QuizError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(QuizError):
    """Malformed or out-of-range input. Never mutates state."""
    status_code = 400


class ConflictError(QuizError):
    """Operation not valid in the current game phase."""
    status_code = 409


class RateLimited(QuizError):
    """Too many submissions; the caller may retry after ``retry_after`` seconds."""
    status_code = 429

    def __init__(self, message: str, retry_after: float):
        super().__init__(message)
        self.retry_after = retry_after


class NotFound(QuizError):
    status_code = 404


class AlreadyAnswered(ConflictError):
    """The player already has a recorded answer for the current question."""
