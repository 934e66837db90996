"""Configuration resolution for query analysis settings.

Resolves settings from multiple sources with priority:
1. Inline kwargs (highest priority)
2. File-level QUERYLENS_SETTINGS variable
3. Django settings.QUERYLENS_SETTINGS
4. DEFAULTS (lowest priority)
"""

import inspect
import random
import re
from typing import Any, Dict, Iterable, Optional, Pattern, Tuple, Union


# Default settings
DEFAULTS: Dict[str, Any] = {
    "n_plus_one_threshold": 3,
    "slow_query_threshold_ms": 100,
    "n_plus_one_detection": True,
    "slow_query_analysis": True,
    "ignored_sql_patterns": [
        r"^SELECT.*FROM.*django_migrations",
        r"^SELECT.*FROM.*schema_migrations",
    ],
    "max_slow_query_history": None,
    "sample_rate": 1.0,
    "fail_on_n_plus_one": True,
    "fail_on_slow_query": False,
}

SETTINGS_NAME = "QUERYLENS_SETTINGS"


def resolve_settings(**inline_overrides: Any) -> Tuple[Dict[str, Any], bool]:
    """Resolve query analysis settings from config hierarchy.

    Priority (highest first):
    1. Inline kwargs passed to monitor()
    2. File-level QUERYLENS_SETTINGS in caller's module
    3. Django settings.QUERYLENS_SETTINGS
    4. DEFAULTS

    Args:
        **inline_overrides: Direct overrides (n_plus_one_threshold, etc.)

    Returns:
        Tuple of (settings_dict, used_defaults: bool)
        - settings_dict: Resolved setting values
        - used_defaults: True if no custom config was found
    """
    resolved = DEFAULTS.copy()
    used_defaults = True

    # Layer 1: Django settings (lowest priority custom config)
    try:
        from django.conf import settings

        django_config = getattr(settings, SETTINGS_NAME, None)
        if django_config:
            resolved.update(django_config)
            used_defaults = False
    except Exception:
        # Django not installed/configured or ImproperlyConfigured
        pass

    # Layer 2: File-level variable in caller's module
    try:
        stack = inspect.stack(0)
        for frame_info in stack[1:]:  # Skip ourselves (frame 0)
            caller_module = inspect.getmodule(frame_info.frame)

            if caller_module:
                file_config = getattr(caller_module, SETTINGS_NAME, None)
                if isinstance(file_config, dict) and file_config:
                    resolved.update(file_config)
                    used_defaults = False
                    break
    except Exception:
        # Frame inspection failed - skip file-level config
        pass

    # Layer 3: Inline overrides (highest priority)
    if inline_overrides:
        resolved.update(inline_overrides)
        used_defaults = False

    return resolved, used_defaults


def is_ignored_sql(sql: Optional[str], patterns: Optional[Iterable[Union[str, Pattern]]]) -> bool:
    """Check SQL against ignore patterns (strings are matched case-insensitively)."""
    if not sql or not patterns:
        return False

    for pattern in patterns:
        if isinstance(pattern, str):
            if re.search(pattern, sql, re.IGNORECASE | re.DOTALL):
                return True
        elif pattern.search(sql):
            return True
    return False


def should_sample(sample_rate: float) -> bool:
    """Decide whether to analyze the current unit of work."""
    if sample_rate >= 1.0:
        return True
    if sample_rate <= 0.0:
        return False
    return random.random() < sample_rate
