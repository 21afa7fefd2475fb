"""Type coercion for caller-supplied identifiers and limits."""

from typing import Any

from workforge.errors import BadRequest


def to_safe_integer(
    value: Any,
    field: str = "id",
    minimum: int | None = 1,
    maximum: int | None = None,
) -> int:
    """Coerce a value to an integer within bounds.

    Accepts ints and integer strings (URL params arrive as strings).
    Rejects booleans, fractional floats, blanks and anything non-numeric.

    Raises:
        BadRequest: If the value cannot be coerced or is out of bounds.
    """
    if isinstance(value, bool) or value is None:
        raise BadRequest(f"{field} must be an integer")

    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise BadRequest(f"{field} must be an integer")
        result = int(value)
    elif isinstance(value, str):
        try:
            result = int(value.strip())
        except ValueError:
            raise BadRequest(f"{field} must be an integer") from None
    else:
        raise BadRequest(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise BadRequest(f"{field} must be at least {minimum}")
    if maximum is not None and result > maximum:
        raise BadRequest(f"{field} must be at most {maximum}")
    return result


def to_safe_user_id(value: Any) -> int | None:
    """Coerce an actor id for audit rows; non-integer ids become None."""
    if value is None:
        return None
    try:
        return to_safe_integer(value, "userId")
    except BadRequest:
        return None
