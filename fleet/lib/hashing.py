import hashlib


def sha256(content: str, length: int | None = None) -> str:
    """Hash content with SHA256, optionally truncated to `length` hex chars."""
    full_hash = hashlib.sha256(content.encode()).hexdigest()
    if length is None:
        return full_hash
    return full_hash[:length]


def content_hash(text: str) -> str:
    """Dedup key for memory entries: whitespace-trimmed text."""
    return sha256(text.strip())
