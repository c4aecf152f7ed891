"""Student identifier hashing for logs.

Raw student ids, names and client keys never appear in application
logs. Every identifier goes through hash_pii() first, which yields a
stable token per student so log lines can still be correlated.
"""
import hashlib
import hmac
import logging
from typing import Optional

logger = logging.getLogger(__name__)

MIN_SALT_LENGTH = 32

# Loaded from the deployment secret store; placeholder in development
_PII_KEY: Optional[bytes] = None


def configure_pii_salt(salt: str) -> None:
    """Configure the hashing key.

    Must be called during application startup before any hashing.

    Raises:
        ValueError: If salt is empty or shorter than MIN_SALT_LENGTH
    """
    global _PII_KEY
    if not salt or len(salt) < MIN_SALT_LENGTH:
        logger.critical(
            "PII_SALT_CONFIGURATION_FAILED",
            extra={"reason": "Salt too short or empty", "min_length": MIN_SALT_LENGTH}
        )
        raise ValueError(f"PII salt must be at least {MIN_SALT_LENGTH} characters")

    _PII_KEY = salt.encode()
    logger.info("PII_SALT_CONFIGURED", extra={"salt_length": len(salt)})


def is_pii_salt_configured() -> bool:
    return _PII_KEY is not None


def hash_pii(value: str) -> str:
    """Keyed SHA-256 (HMAC) of a student identifier.

    Returns:
        64-char hex digest, identical for the same value and key

    Raises:
        RuntimeError: If the salt has not been configured
    """
    if _PII_KEY is None:
        logger.critical(
            "PII_HASH_FAILED",
            extra={"reason": "Salt not configured", "action": "call configure_pii_salt()"}
        )
        raise RuntimeError("PII salt not configured. Call configure_pii_salt() first.")

    return hmac.new(_PII_KEY, value.encode(), hashlib.sha256).hexdigest()
