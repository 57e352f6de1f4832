from __future__ import annotations

from typing import Any, TypeVar

import pydantic

from storyweave.domain.errors import ValidationError

ModelT = TypeVar("ModelT", bound=pydantic.BaseModel)


def coerce_model(model_cls: type[ModelT], value: Any, *, label: str | None = None) -> ModelT:
    """Accept a model instance or a plain mapping, re-raising shape errors as ValidationError."""

    if isinstance(value, model_cls):
        return value
    try:
        return model_cls.model_validate(value)
    except pydantic.ValidationError as exc:
        name = label or model_cls.__name__
        raise ValidationError(f"Malformed {name}: {exc.error_count()} error(s): {exc}") from exc
