"""Exception hierarchy for the mastery engine.

- EngineError: base for everything raised by the engine
- InvalidInput: malformed caller input
- NotFound: unknown goal, node, topic or unit
- ValidationFailure: a generated assessment broke coverage rules
- PreconditionViolation: an operation was refused before any mutation
- SchedulingConflict: a concurrent writer claimed the same path slot
- JudgeError / JudgeTimeout: equivalence judge failures (recorded, never raised out of grading)
"""


class EngineError(Exception):
    """Base exception for all engine errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional error context.
    """

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} - Details: {self.details}"
        return self.message


class InvalidInput(EngineError):
    """Caller supplied malformed input (unknown ids, contradictory fields)."""


class NotFound(EngineError):
    """A referenced entity does not exist."""


class ValidationFailure(EngineError):
    """A generated assessment failed coverage validation.

    Attributes:
        violations: List of violation dicts (unit_id, question_id, reason).
    """

    def __init__(self, message: str, violations: list | None = None, details: dict | None = None):
        self.violations = violations or []
        super().__init__(message, details)


class PreconditionViolation(EngineError):
    """An operation's preconditions do not hold; nothing was written."""


class SchedulingConflict(EngineError):
    """A path slot was claimed concurrently. Safe to retry."""


class JudgeError(EngineError):
    """The equivalence judge failed or returned an unusable verdict."""


class JudgeTimeout(JudgeError):
    """The equivalence judge did not answer within the timeout."""
