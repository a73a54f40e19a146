# Utilities module

from .keyed_lock import KeyedLock
from .mnemonic_vault import DecryptionError, decrypt, encrypt
from .phone import normalize_phone, sanitize_sms_text
from .scheduler import DelayedTaskScheduler
from .webhook_signature import validate_webhook_signature

__all__ = [
    "DecryptionError",
    "DelayedTaskScheduler",
    "KeyedLock",
    "decrypt",
    "encrypt",
    "normalize_phone",
    "sanitize_sms_text",
    "validate_webhook_signature",
]
