from __future__ import annotations

from typing import Optional


class FormflowError(Exception):
    """Base class for every error raised by the form pipeline."""


class NoJsonFound(FormflowError, ValueError):
    """Generator text has no `{ ... }` object boundaries."""


class JsonSyntaxError(FormflowError, ValueError):
    """Text still failed to parse after syntax repair."""


class InvalidGeneratorOutput(FormflowError, ValueError):
    """Emergency reconstruction found nothing to salvage."""


class NoPagesFound(FormflowError, ValueError):
    """Parsed object lacks a usable `pages` array."""


class InvalidPageGraph(FormflowError, ValueError):
    def __init__(self, errors: list) -> None:
        self.errors = list(errors or [])
        first = self.errors[0] if self.errors else {}
        summary = f"{first.get('path', '?')}: {first.get('message', 'invalid')}" if first else "invalid page graph"
        super().__init__(f"page graph failed validation ({len(self.errors)} errors; first {summary})")


class GeneratorError(FormflowError):
    """Upstream generator call failed or returned empty content."""


class GenerationFailed(FormflowError):
    def __init__(self, attempts: int, last_error: Optional[BaseException] = None, action: str = "generate form") -> None:
        self.attempts = attempts
        self.last_error = last_error
        self.last_error_message = str(last_error) if last_error is not None else "Unknown error"
        super().__init__(
            f"Failed to {action} after {attempts} attempts. Last error: {self.last_error_message}"
        )


class AnalysisFailed(FormflowError):
    """Submission analysis could not be produced."""


class NotFound(FormflowError, KeyError):
    def __init__(self, kind: str, key: str) -> None:
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key}")

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return f"{self.kind} not found: {self.key}"
