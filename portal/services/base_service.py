"""
Base Service Class.

Minimal base class standardizing the logger and REST client pattern for
the data services.  Services extend this and add their own collaborators
via __init__.

Response bodies that do not match the expected model are reported as
``ApiError`` (no status code), so callers handle a single error type.
"""

from __future__ import annotations

from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from portal.api_client import ApiClient, ApiError
from portal.logger import StructuredLogger

ModelT = TypeVar("ModelT", bound=BaseModel)


class BaseService:
    """Base class for services backed by the REST API. Provides a logger."""

    def __init__(self, api: ApiClient, logger: StructuredLogger) -> None:
        self._api: ApiClient = api
        self._logger: StructuredLogger = logger

    def _parse_one(self, model: type[ModelT], body: Any) -> ModelT:
        """Validate a JSON object body into a *model* instance.

        Raises:
            ApiError: If the body does not match *model*.
        """
        try:
            return model.model_validate(body)
        except ValidationError as exc:
            raise self._malformed(model, body, exc) from exc

    def _parse_list(self, model: type[ModelT], body: Any) -> list[ModelT]:
        """Validate a JSON array body into *model* instances.

        An empty or missing body yields ``[]``.

        Raises:
            ApiError: If the body is not an array or any item does not
                match *model*.
        """
        if not body:
            return []
        if not isinstance(body, list):
            raise self._malformed(model, body, None)
        try:
            return [model.model_validate(item) for item in body]
        except ValidationError as exc:
            raise self._malformed(model, body, exc) from exc

    def _malformed(
        self, model: type[BaseModel], body: Any, exc: Optional[ValidationError]
    ) -> ApiError:
        detail = f"{exc.error_count()} invalid field(s)" if exc is not None else "unexpected shape"
        message = f"Error: malformed {model.__name__} response ({detail})"
        self._logger.error(message, extra={"event": "MALFORMED_RESPONSE"})
        return ApiError(message, payload=body)
