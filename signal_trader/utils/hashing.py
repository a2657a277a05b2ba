"""Content hashing for signal deduplication."""

import hashlib


def hash_signal(content: str, image_base64: str | None = None, message_id: str | None = None) -> str:
    """SHA-256 over text + image payload + message id.

    Used as the Signal idempotency key and as the queue job id.
    """
    data = f"{content}{image_base64 or ''}:{message_id or ''}"
    return hashlib.sha256(data.encode("utf-8")).hexdigest()
