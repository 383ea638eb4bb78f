import hashlib
import hmac


def compute_signature(secret: str, message) -> str:
    """Hex HMAC-SHA256 of ``message`` (str or bytes) under ``secret``."""
    if isinstance(message, str):
        message = message.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def payment_signature(secret: str, order_id: str, payment_id: str) -> str:
    return compute_signature(secret, f"{order_id}|{payment_id}")


def signatures_match(expected: str, supplied) -> bool:
    if not supplied:
        return False
    if isinstance(supplied, str):
        supplied = supplied.encode("utf-8")
    return hmac.compare_digest(expected.encode("utf-8"), supplied)
