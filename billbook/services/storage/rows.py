"""Decoding of storage rows into models."""

from typing import Any, Iterable, Mapping, TypeVar

from pydantic import BaseModel, ValidationError

from billbook.services.storage.interface import RowDecodingError

ModelT = TypeVar("ModelT", bound=BaseModel)


def decode_row(model: type[ModelT], row: Mapping[str, Any]) -> ModelT:
    """
    Validate one row into `model`.

    Raises:
        RowDecodingError: If a required column is missing or a value is invalid
    """
    try:
        return model.model_validate(dict(row))
    except ValidationError as e:
        missing = [
            ".".join(str(part) for part in error["loc"])
            for error in e.errors()
            if error["type"] == "missing"
        ]
        raise RowDecodingError(model.__name__, missing, str(e)) from e


def decode_rows(model: type[ModelT], rows: Iterable[Mapping[str, Any]]) -> list[ModelT]:
    return [decode_row(model, row) for row in rows]
