"""Secret helpers: string data normalization and random credentials."""

import base64
import logging
import os

logger = logging.getLogger(__name__)


def reset_string_data_from_data(secret):
    """Move the secret data into string_data.

    The API returns ``data`` values base64 encoded. After this call every
    key is readable as a plain string in ``string_data`` and ``data`` is
    empty, so writing the secret back lets the API server rebuild ``data``
    from ``string_data``.
    """
    string_data = {}
    for key, value in (secret.data or {}).items():
        string_data[key] = base64.b64decode(value).decode("utf-8")
    secret.string_data = string_data
    secret.data = {}
    return secret


def _random_bytes(num_bytes):
    try:
        return os.urandom(num_bytes)
    except NotImplementedError as e:
        # No secure randomness source: nothing a retry could fix.
        logger.critical(f"Cannot generate random bytes: {e}")
        raise SystemExit(f"no secure randomness source available: {e}") from e


def random_base64(num_bytes):
    return base64.b64encode(_random_bytes(num_bytes)).decode("ascii")


def random_hex(num_bytes):
    return _random_bytes(num_bytes).hex()
