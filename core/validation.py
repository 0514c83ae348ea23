"""
Core Module - Input Validation.

Helpers shared by every inbound operation. They raise
ValidationError before any state is touched.
"""

import logging
import math
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from .exceptions import ValidationError


logger = logging.getLogger(__name__)


# Amount columns are Numeric(28, 10): 18 integer digits
MAX_MAGNITUDE = Decimal("1E+18")


# ============================================================
# VALIDATION HELPERS
# ============================================================

def require_text(value: Any, field: str) -> str:
    """
    Require a non-empty string.

    Args:
        value: Candidate value
        field: Field name for the error

    Returns:
        The stripped string
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be a non-empty string", field=field, value=value)
    return value.strip()


def to_decimal(
    value: Any,
    field: str,
    allow_negative: bool = True,
    allow_zero: bool = True,
) -> Decimal:
    """
    Convert a numeric input to a finite Decimal.

    Floats go through str() so 100.0015 stays 100.0015. Magnitudes
    of MAX_MAGNITUDE and above are rejected.

    Args:
        value: int, float, str or Decimal
        field: Field name for the error
        allow_negative: Accept values below zero
        allow_zero: Accept exactly zero

    Returns:
        Decimal value
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field, value=value)

    try:
        if isinstance(value, Decimal):
            result = value
        elif isinstance(value, float):
            if not math.isfinite(value):
                raise ValidationError(f"{field} must be finite", field=field, value=value)
            result = Decimal(str(value))
        elif isinstance(value, (int, str)):
            result = Decimal(value)
        else:
            raise ValidationError(f"{field} must be a number", field=field, value=value)
    except InvalidOperation as e:
        raise ValidationError(f"{field} is not a valid number", field=field, value=value, cause=e)

    if not result.is_finite():
        raise ValidationError(f"{field} must be finite", field=field, value=value)
    if abs(result) >= MAX_MAGNITUDE:
        raise ValidationError(f"{field} is out of range", field=field, value=value)
    if not allow_negative and result < 0:
        raise ValidationError(f"{field} must not be negative", field=field, value=value)
    if not allow_zero and result == 0:
        raise ValidationError(f"{field} must not be zero", field=field, value=value)

    return result


def to_ratio(
    value: Any,
    field: str,
    minimum: Optional[float] = None,
    maximum: Optional[float] = None,
) -> float:
    """Convert to a finite float within optional bounds."""
    if value is None or isinstance(value, bool) or not isinstance(value, (int, float, Decimal, str)):
        raise ValidationError(f"{field} must be a number", field=field, value=value)

    try:
        result = float(value)
    except ValueError as e:
        raise ValidationError(f"{field} is not a valid number", field=field, value=value, cause=e)

    if not math.isfinite(result):
        raise ValidationError(f"{field} must be finite", field=field, value=value)
    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", field=field, value=value)
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be <= {maximum}", field=field, value=value)

    return result


def known_fields(config_cls: Any, data: Mapping[str, Any], section: str) -> Dict[str, Any]:
    """
    Keep only the keys a config dataclass accepts.

    Unknown keys (typos, settings from older versions) are logged
    and dropped.
    """
    names = {f.name for f in fields(config_cls)}
    unknown = sorted(set(data) - names)
    if unknown:
        logger.warning(f"Ignoring unknown {section} settings: {', '.join(unknown)}")
    return {key: value for key, value in data.items() if key in names}
