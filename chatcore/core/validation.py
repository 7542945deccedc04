from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError as PydanticValidationError

from chatcore.core.exceptions import ValidationException

SchemaT = TypeVar("SchemaT", bound=BaseModel)


def parse_input(schema: type[SchemaT], **data: Any) -> SchemaT:
    """Validate service input with a pydantic schema, raising ValidationException."""
    try:
        return schema(**data)
    except PydanticValidationError as e:
        first = e.errors()[0]
        message = first["msg"].removeprefix("Value error, ")
        field = ".".join(str(part) for part in first["loc"])
        raise ValidationException(f"{field}: {message}" if field else message) from None

