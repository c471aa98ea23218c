import re

TRUNCATION_SUFFIX = "... (truncated for brevity)"


def sanitize_directory_name(name: str) -> str:
    """Lowercase ``name`` and reduce it to alphanumerics joined by single dashes."""
    sanitized = re.sub(r"[^\w-]|_", "-", name.lower())
    sanitized = re.sub(r"-{2,}", "-", sanitized)
    return sanitized.strip("-")


def truncate_text(text: str, max_length: int) -> str:
    """Cut ``text`` to ``max_length`` characters, marking the cut."""
    if max_length <= 0 or len(text) <= max_length:
        return text
    return f"{text[:max_length]}{TRUNCATION_SUFFIX}"
