"""Exceptions raised by ilsws-client."""

from typing import Any, Optional, Sequence


class IlswsError(Exception):
    """Base exception for all ilsws-client errors."""


class ConfigurationError(IlswsError):
    """Configuration file or rule string is malformed."""


class UnsupportedRuleKind(ConfigurationError):
    """Validation rule uses a kind the validator does not know."""

    def __init__(self, kind: str, rule: str):
        self.kind = kind
        self.rule = rule
        super().__init__(f"No validation rule for type {kind!r} (rule: {rule!r})")


class UnknownWireType(ConfigurationError):
    """Field has no description, or one the record builder cannot construct."""

    def __init__(self, field: str, type_name: Optional[str]):
        self.field = field
        self.type_name = type_name
        if type_name is None:
            message = f"No field description for {field!r}"
        else:
            message = f"Unknown field type {type_name!r} for {field!r}"
        super().__init__(message)


class FieldError(IlswsError, ValueError):
    """A caller-supplied field value was rejected."""

    def __init__(self, field: str, message: str):
        self.field = field
        super().__init__(message)


class MissingRequiredField(FieldError):
    def __init__(self, field: str):
        super().__init__(field, f"The {field} field is required")


class FieldValidationFailed(FieldError):
    def __init__(self, field: str, value: Any, rule: str):
        self.value = value
        self.rule = rule
        super().__init__(field, f"Invalid {field}: \"{value}\" (rule: '{rule}')")


class InvalidDateFormat(FieldError):
    def __init__(self, field: Optional[str], value: Any):
        self.value = value
        super().__init__(field or "date", f"Invalid date format: \"{value}\" in {field or 'date'} field")


class InvalidSetMember(FieldError):
    def __init__(self, field: str, value: Any, members: Sequence[str]):
        self.value = value
        self.members = tuple(members)
        super().__init__(field, f"Invalid set member \"{value}\" in {field}")


class InvalidFieldLength(FieldError):
    def __init__(self, field: str, length: int, min_length: int, max_length: Optional[int]):
        self.length = length
        self.min_length = min_length
        self.max_length = max_length
        if max_length is None:
            allowed = f"at least {min_length}"
        else:
            allowed = f"{min_length}-{max_length}"
        super().__init__(field, f"Invalid field length {length} in {field} field (allowed {allowed})")


class ApiError(IlswsError):
    """The ILSWS server answered with a non-success HTTP status."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None):
        self.status_code = status_code
        self.url = url
        super().__init__(f"HTTP {status_code}: {message}" if status_code else message)
