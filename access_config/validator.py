"""
Configuration Validator (``access_config.validator``).

Checks a parsed ``AccessConfig`` for values the kernel cannot work with.
Returns every problem found rather than stopping at the first one.
"""

from __future__ import annotations

import re

from access_config.schema import AccessConfig

# Minimum credential code entropy in bytes
MIN_CODE_BYTES = 16

# Shortest rotation period for time-window codes
MIN_TIME_WINDOW_SECONDS = 30


def validate_config(config: AccessConfig) -> list[str]:
    """Return a list of problems (empty when the configuration is usable)."""
    problems: list[str] = []
    creds = config.credentials

    if creds.code_bytes < MIN_CODE_BYTES:
        problems.append(f"credentials.code_bytes must be at least {MIN_CODE_BYTES}")
    if not creds.default_access_level:
        problems.append("credentials.default_access_level must not be empty")
    window = creds.time_window_seconds
    if not isinstance(window, int) or isinstance(window, bool) or window < MIN_TIME_WINDOW_SECONDS:
        problems.append(
            f"credentials.time_window_seconds must be an integer of at least {MIN_TIME_WINDOW_SECONDS}"
        )

    for kind, defaults in (("visitor", creds.visitor), ("employee", creds.employee)):
        if defaults.usage_limit is not None and defaults.usage_limit < 0:
            problems.append(f"credentials.{kind}.usage_limit must be non-negative")

    hours = creds.employee.validity_hours
    if not isinstance(hours, int) or isinstance(hours, bool) or hours <= 0:
        problems.append("credentials.employee.validity_hours must be a positive integer")

    rules = config.validation
    for name in ("phone_pattern", "id_document_pattern"):
        try:
            re.compile(getattr(rules, name))
        except (re.error, TypeError) as exc:
            problems.append(f"validation.{name} is not a valid regex: {exc}")
    for name in ("max_name_length", "max_purpose_length"):
        if getattr(rules, name) <= 0:
            problems.append(f"validation.{name} must be positive")

    return problems
