# config.py — sane config with loud failures

import os
import time

# Domain knobs with defaults. Every value can be overridden from the environment.
DEFAULTS = {
    # Posts
    "PIN_LIMIT": 4,
    "MAX_MEDIA_ITEMS": 5,
    "DELETED_RETENTION_DAYS": 15,

    # Observability
    "EVENTS_ENABLED": True,
    "AUDIT_DENIALS": True,
}

_BOOL_KEYS = {"EVENTS_ENABLED", "AUDIT_DENIALS"}
_POSITIVE_INT_KEYS = {"PIN_LIMIT", "MAX_MEDIA_ITEMS", "DELETED_RETENTION_DAYS"}


def _as_bool(val):
    return val.lower() in ('true', '1', 'yes', 'on') if isinstance(val, str) else bool(val)


def load_config():
    """
    Load env config, erroring clearly if a knob has a bad value.
    Returns a dict of defaults overridden by the environment (types normalized).
    """
    cfg = {}

    for k, v in DEFAULTS.items():
        val = os.getenv(k, v)

        if k in _BOOL_KEYS:
            val = _as_bool(val)
        elif k in _POSITIVE_INT_KEYS:
            try:
                val = int(val)
                if val <= 0:
                    raise ValueError(f"{k} must be a positive integer")
            except (ValueError, TypeError):
                raise RuntimeError(
                    f"{k} must be a positive integer, got: {val}"
                )

        cfg[k] = val

    return cfg


def get_debug_config():
    """
    Get configuration for debug endpoint.
    Returns sanitized config (no secrets) with a metadata block.
    """
    cfg = load_config()

    # Remove sensitive keys
    sanitized = {
        k: v for k, v in cfg.items()
        if not any(secret in k.upper() for secret in ["KEY", "SECRET", "PASSWORD", "TOKEN"])
    }

    sanitized["_metadata"] = {
        "version": "1.0",
        "environment": os.getenv("ENVIRONMENT", "development"),
        "loaded_at": time.time()
    }

    return sanitized
