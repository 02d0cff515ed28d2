"""Validation helpers for DevFleet configuration."""

from pydantic import ValidationError as PydanticValidationError


def flatten_pydantic_errors(exc: PydanticValidationError) -> list[str]:
    """Turn a pydantic ValidationError into one readable line per field.

    Example:
        >>> try:
        ...     DevConfig.model_validate({"service": "app"})
        ... except PydanticValidationError as e:
        ...     flatten_pydantic_errors(e)
        ["Field 'image': Field required", "Field 'provider': Field required"]
    """
    messages: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "config"
        message = error.get("msg", "Unknown error")
        if error.get("type") == "value_error":
            message = f"{message} (received: {error.get('input')!r})"
        messages.append(f"Field '{location}': {message}")
    return messages or ["Validation failed with unknown error"]
