"""
BaseIntakeAdapter, the abstract base for inbound payload adapters.

Each adapter runs parse -> transform -> validate and returns a typed
dataclass from intake.types. Views hand the raw body over and never look
inside it themselves.
"""

import json
from abc import ABC, abstractmethod
from typing import Any

from ..exceptions import ValidationError


class BaseIntakeAdapter(ABC):
    """
    Three-step pipeline: parse -> transform -> validate.

    Subclasses implement transform() and validate(); parse() accepts JSON
    bytes/str or an already-decoded dict.
    """

    def __init__(self, raw_body: bytes | str | dict, content_type: str = ''):
        self._raw_body = raw_body
        self._content_type = content_type
        self._parsed: dict[str, Any] = {}

    def parse(self) -> dict[str, Any]:
        raw = self._raw_body
        if isinstance(raw, (bytes, str)):
            try:
                raw = json.loads(raw or b'{}')
            except (TypeError, ValueError) as exc:
                raise ValidationError(
                    message='Request body is not valid JSON.',
                    code='INVALID_JSON',
                    detail={'error': str(exc)},
                )
        if not isinstance(raw, dict):
            raise ValidationError(message='Request body must be a JSON object.', code='INVALID_JSON')
        self._parsed = raw
        return raw

    @abstractmethod
    def transform(self) -> Any:
        """Turn self._parsed into the adapter's dataclass."""

    @abstractmethod
    def validate(self, result: Any) -> None:
        """Raise ValidationError listing every bad field."""

    @staticmethod
    def raise_if_errors(errors: list[dict[str, str]]) -> None:
        if errors:
            raise ValidationError(
                message='Request validation failed.',
                code='VALIDATION_ERROR',
                detail={'errors': errors},
            )

    def process(self) -> Any:
        """parse -> transform -> validate, returning the validated result."""
        self.parse()
        result = self.transform()
        self.validate(result)
        return result
