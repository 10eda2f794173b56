"""
Field comparators for values the backend does not echo back verbatim.
"""
import re
from typing import Any

_SECRET_PART = re.compile(r"(?i)\b(AccountKey|SharedAccessKey|Password)=[^;]*")
_SERVICE_BUS_HOST = re.compile(r"sb://([^:/;]+)(:5671)?/")
_FULLY_MASKED = re.compile(r"\*+")


def case_insensitive_equal(left: Any, right: Any) -> bool:
    return str(left).lower() == str(right).lower()


def resource_group_equal(left: Any, right: Any) -> bool:
    """Resource group names compare case-insensitively.

    Some Azure APIs return them lower-cased
    (https://github.com/Azure/azure-rest-api-specs/issues/5788).
    """
    return case_insensitive_equal(left, right)


def _normalise_connection_string(value: str) -> str:
    # The AMQP port is optional on input and always present in responses.
    return _SERVICE_BUS_HOST.sub(r"sb://\1:5671/", value).rstrip(";")


def mask_connection_string(value: str) -> str:
    return _SECRET_PART.sub(lambda m: f"{m.group(1)}=****", value)


def connection_string_equal(left: Any, right: Any) -> bool:
    """Connection strings compare equal when one side is the other with its keys masked.

    The backend returns connection strings with account keys and passwords
    replaced by ``****``; two different plaintext keys still differ.
    """
    left = _normalise_connection_string(str(left))
    right = _normalise_connection_string(str(right))
    return (
        left == right
        or mask_connection_string(left) == right
        or left == mask_connection_string(right)
    )


def is_fully_masked(value: Any) -> bool:
    """True for a secret the backend replaced wholesale with asterisks."""
    return isinstance(value, str) and _FULLY_MASKED.fullmatch(value) is not None
