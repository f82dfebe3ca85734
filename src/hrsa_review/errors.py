from __future__ import annotations

from typing import List, Optional


class ReviewError(RuntimeError):
    pass


class MalformedResponse(ReviewError):
    """LLM reply is not JSON, or lacks the expected top-level shape."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw_excerpt = (raw or "")[:500]


class LlmError(ReviewError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimited(LlmError):
    def __init__(self, message: str = "rate limited", retry_after: Optional[float] = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class RetryExhausted(ReviewError):
    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"gave up after {attempts} attempts: {type(last_error).__name__}: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class RuleSetMissing(ReviewError):
    pass


class AmbiguousElementMatch(ReviewError):
    def __init__(self, label: str, candidates: List[str]):
        super().__init__(f"{label!r} matches {len(candidates)} manual entries: {candidates}")
        self.label = label
        self.candidates = list(candidates)
