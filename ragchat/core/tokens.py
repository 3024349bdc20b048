"""Token estimation."""

CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Rough token estimate: 1 token ~ 4 characters, at least 1 for non-empty text."""
    if not text:
        return 0
    return max(1, len(text) // CHARS_PER_TOKEN)
