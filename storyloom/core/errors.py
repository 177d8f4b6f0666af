from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    """Error codes shared by the pipeline and its collaborators"""

    STORY_REWRITE_FAILED = "STORY_REWRITE_FAILED"  # rewrite raised or timed out
    STORY_REWRITE_INVALID = "STORY_REWRITE_INVALID"  # empty text or "Error:" sentinel
    EMPTY_STORY = "EMPTY_STORY"  # segmentation produced no pages
    LLM_TIMEOUT = "LLM_TIMEOUT"
    LLM_JSON_INVALID = "LLM_JSON_INVALID"
    LLM_FAILED = "LLM_FAILED"
    IMAGE_TIMEOUT = "IMAGE_TIMEOUT"
    IMAGE_RATE_LIMIT = "IMAGE_RATE_LIMIT"
    IMAGE_FAILED = "IMAGE_FAILED"
    TTS_FAILED = "TTS_FAILED"
    ANIMATION_FAILED = "ANIMATION_FAILED"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    RUN_SEALED = "RUN_SEALED"
    DB_WRITE_FAILED = "DB_WRITE_FAILED"
    UNKNOWN = "UNKNOWN"


# Retryable codes
RETRYABLE_ERRORS = {
    ErrorCode.LLM_TIMEOUT,
    ErrorCode.LLM_JSON_INVALID,
    ErrorCode.IMAGE_TIMEOUT,
    ErrorCode.IMAGE_RATE_LIMIT,
}

# Backoff (seconds)
BACKOFF_SECONDS = {
    ErrorCode.LLM_TIMEOUT: [2, 5],
    ErrorCode.LLM_JSON_INVALID: [2, 5],
    ErrorCode.IMAGE_TIMEOUT: [2, 5, 12],
    ErrorCode.IMAGE_RATE_LIMIT: [5, 10, 20],
}


class StoryBookError(Exception):
    """Base exception"""

    def __init__(self, code: ErrorCode, message: str, details: Optional[dict] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self):
        return f"[{self.code.value}] {self.message}"


class StoryRewriteError(StoryBookError):
    """The one stage that cannot be isolated per page"""

    def __init__(self, code: ErrorCode, message: str, raw_output: str = None):
        super().__init__(code=code, message=message, details={"raw_output": raw_output})


class LLMError(StoryBookError):
    def __init__(self, code: ErrorCode, message: str, raw_output: str = None):
        super().__init__(code=code, message=message, details={"raw_output": raw_output})


class ImageError(StoryBookError):
    def __init__(self, code: ErrorCode, message: str, page: int = None):
        super().__init__(code=code, message=message, details={"page": page})


class TTSError(StoryBookError):
    def __init__(self, message: str, provider: str = None):
        super().__init__(
            code=ErrorCode.TTS_FAILED, message=message, details={"provider": provider}
        )


class AnimationError(StoryBookError):
    def __init__(self, message: str, provider: str = None):
        super().__init__(
            code=ErrorCode.ANIMATION_FAILED,
            message=message,
            details={"provider": provider},
        )


class InvalidStageTransition(StoryBookError):
    def __init__(self, current: str, requested: str):
        super().__init__(
            code=ErrorCode.INVALID_TRANSITION,
            message=f"Cannot move from {current} to {requested}",
            details={"current": current, "requested": requested},
        )


class RunSealedError(StoryBookError):
    def __init__(self, run_id: str):
        super().__init__(
            code=ErrorCode.RUN_SEALED,
            message=f"Run {run_id} was handed off and can no longer change",
            details={"run_id": run_id},
        )


class TransientError(Exception):
    """Temporary error worth retrying"""

    pass


def is_retryable(error: Exception) -> bool:
    """Whether an error is worth another attempt"""
    if isinstance(error, TransientError):
        return True
    if isinstance(error, StoryBookError):
        return error.code in RETRYABLE_ERRORS
    return False


def get_backoff(error_code: ErrorCode, attempt: int) -> int:
    """Backoff for the given attempt"""
    backoffs = BACKOFF_SECONDS.get(error_code, [2])
    return backoffs[min(attempt, len(backoffs) - 1)]
