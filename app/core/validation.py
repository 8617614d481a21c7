"""Input validation helpers for route handlers.

Handlers validate their own query/path input so that a malformed request is
still counted, logged and rate limited by the pipeline like any other.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, TypeVar

from pydantic import BaseModel, ValidationError

from app.core.errors import validation_error

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_params(model: type[ModelT], params: Mapping[str, Any], *, message: str = "Invalid query parameters") -> ModelT:
    """Validate ``params`` against ``model``.

    Raises:
        ValidationAppError: With the first offending field in ``details``.
    """

    try:
        return model.model_validate(dict(params))
    except ValidationError as exc:
        errors = exc.errors()
        field = ".".join(str(part) for part in errors[0]["loc"]) if errors else ""
        logger.info(
            "validation.failed",
            extra={"model": model.__name__, "field": field, "error_count": len(errors)},
        )
        raise validation_error(message, field=field) from exc
