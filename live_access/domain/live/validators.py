"""Composable input validation.

Each validator is a pure function returning a `ValidationResult`; results are
combined with `combine` and turned into a `ValidationError` at the edge with
`raise_for_violations`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from live_access.utils.app_errors import ValidationError

from .credential.credential_models import Role

CHANNEL_PATTERN = re.compile(r"[A-Za-z0-9_-]{1,64}")
MAX_IDENTITY_LENGTH = 255


@dataclass(frozen=True)
class FieldViolation:
    field: str
    constraint: str
    message: str

    def as_dict(self) -> dict[str, str]:
        return {"field": self.field, "constraint": self.constraint, "message": self.message}


@dataclass(frozen=True)
class ValidationResult:
    violations: tuple[FieldViolation, ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return not self.violations

    def raise_for_violations(self) -> None:
        if self.ok:
            return
        summary = "; ".join(f"{v.field}: {v.message}" for v in self.violations)
        raise ValidationError(
            f"Invalid request: {summary}",
            violations=[v.as_dict() for v in self.violations],
        )


OK = ValidationResult()


def _fail(field_name: str, constraint: str, message: str) -> ValidationResult:
    return ValidationResult((FieldViolation(field_name, constraint, message),))


def combine(*results: ValidationResult) -> ValidationResult:
    violations: tuple[FieldViolation, ...] = ()
    for result in results:
        violations += result.violations
    return ValidationResult(violations)


def is_valid_channel(channel: Any) -> bool:
    return isinstance(channel, str) and CHANNEL_PATTERN.fullmatch(channel) is not None


def validate_channel(channel: Any, field_name: str = "channel") -> ValidationResult:
    if not is_valid_channel(channel):
        return _fail(
            field_name,
            "pattern",
            "must be 1-64 characters of letters, digits, '-' or '_'",
        )
    return OK


def validate_live_id(live_id: Any) -> ValidationResult:
    return validate_channel(live_id, field_name="live_id")


def validate_identity(identity: Any) -> ValidationResult:
    if not isinstance(identity, str):
        return _fail("identity", "type", "must be a string")
    if len(identity) > MAX_IDENTITY_LENGTH:
        return _fail("identity", "max_length", f"must be at most {MAX_IDENTITY_LENGTH} characters")
    return OK


def validate_role(role: Any) -> ValidationResult:
    try:
        Role.parse(role)
    except ValueError:
        return _fail("role", "enum", "must be one of: publisher, subscriber")
    return OK


def validate_actor_id(actor_id: Any) -> ValidationResult:
    if not isinstance(actor_id, int) or isinstance(actor_id, bool) or actor_id < 0:
        return _fail("actor_id", "minimum", "must be a non-negative integer")
    return OK


def validate_duration(duration: Any, max_seconds: int) -> ValidationResult:
    if duration is None:
        return OK
    if not isinstance(duration, int) or isinstance(duration, bool):
        return _fail("duration", "type", "must be an integer number of seconds")
    if duration <= 0 or duration > max_seconds:
        return _fail("duration", "range", f"must be between 1 and {max_seconds} seconds")
    return OK
