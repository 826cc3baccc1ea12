"""
Base Configuration Model.

Provides base configuration class with environment variable substitution
and sensitive field masking capabilities.
"""

import os
import re
from decimal import Decimal
from typing import Any, ClassVar, Set

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from ...core.exceptions import ConfigurationError, NewValueIsAboveMaxBpsError

# pydantic error types raised as a dedicated exception class
ERROR_CLASSES = {"NewValueIsAboveMaxBps": NewValueIsAboveMaxBpsError}


# Pattern for environment variable substitution: ${VAR} or ${VAR:default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::([^}]*))?\}")


def substitute_env_vars(value: str) -> str:
    """
    Substitute environment variables in a string.

    Supports formats:
    - ${VAR} - substitutes with VAR value, empty if not set
    - ${VAR:default} - substitutes with VAR value, or 'default' if not set
    """

    def replace_match(match: re.Match) -> str:
        var_name = match.group(1)
        default_value = match.group(2)

        env_value = os.environ.get(var_name)

        if env_value is not None:
            return env_value
        elif default_value is not None:
            return default_value
        else:
            return ""

    return ENV_VAR_PATTERN.sub(replace_match, value)


def process_value(value: Any) -> Any:
    """Process a value, substituting env vars if it's a string."""
    if isinstance(value, str):
        return substitute_env_vars(value)
    elif isinstance(value, dict):
        return {k: process_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [process_value(item) for item in value]
    return value


def coerce_decimal(v: Any) -> Any:
    """Coerce numeric input to a finite Decimal."""
    if v is None or isinstance(v, Decimal):
        return v
    if isinstance(v, (int, float, str)):
        try:
            decimal_val = Decimal(str(v))
        except Exception as e:
            raise ValueError(f"Cannot convert '{v}' to Decimal: {e}")
        if not decimal_val.is_finite():
            raise ValueError(f"Invalid value: {v} (NaN or Infinity not allowed)")
        return decimal_val
    return v


class BaseConfig(BaseModel):
    """
    Base configuration model with common functionality.

    Features:
    - Environment variable substitution: ${VAR} or ${VAR:default}
    - Sensitive field masking for display
    - Immutable by default (frozen)
    - ``updated(**changes)`` re-validates a modified copy

    Example:
        >>> class MyConfig(BaseConfig):
        ...     api_key: str
        ...     host: str = "localhost"
        ...
        >>> config = MyConfig(api_key="${API_KEY:default_key}")
    """

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        validate_default=True,
        str_strip_whitespace=True,
    )

    _sensitive_fields: ClassVar[Set[str]] = {
        "api_key",
        "secret",
        "password",
    }

    @model_validator(mode="before")
    @classmethod
    def substitute_environment_variables(cls, data: Any) -> Any:
        """Substitute environment variables in all string values."""
        if isinstance(data, dict):
            return process_value(data)
        return data

    def updated(self, **changes: Any):
        """
        Return a validated copy with ``changes`` applied.

        Raises:
            ConfigurationError: if the resulting model is invalid; ``code``
                is the first pydantic error type and ``details["errors"]``
                lists every failure.
        """
        data = self.model_dump()
        data.update(changes)
        try:
            return self.__class__(**data)
        except ValidationError as e:
            errors = e.errors()
            error_class = ERROR_CLASSES.get(errors[0]["type"], ConfigurationError)
            raise error_class(
                f"Invalid {self.__class__.__name__}: {errors[0]['msg']}",
                code=errors[0]["type"],
                details={"errors": [err["msg"] for err in errors]},
            ) from e

    def masked_dict(self) -> dict[str, Any]:
        """Get dictionary with sensitive fields masked."""
        data = self.model_dump(mode="json")
        return self._mask_sensitive(data)

    def _mask_sensitive(self, data: dict[str, Any]) -> dict[str, Any]:
        result = {}
        for key, value in data.items():
            if self._is_sensitive_field(key) and value:
                result[key] = "***"
            elif isinstance(value, dict):
                result[key] = self._mask_sensitive(value)
            elif isinstance(value, list):
                result[key] = [
                    self._mask_sensitive(item) if isinstance(item, dict) else item
                    for item in value
                ]
            else:
                result[key] = value
        return result

    def _is_sensitive_field(self, field_name: str) -> bool:
        field_lower = field_name.lower()
        return any(
            sensitive in field_lower for sensitive in self._sensitive_fields
        )

    def __repr__(self) -> str:
        masked = self.masked_dict()
        fields = ", ".join(f"{k}={v!r}" for k, v in masked.items())
        return f"{self.__class__.__name__}({fields})"

    def __str__(self) -> str:
        return self.__repr__()
