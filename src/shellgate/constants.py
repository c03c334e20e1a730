"""Shared constants for shellgate."""

# Process exit codes for outcomes where the command did not run (or was
# cancelled). A command that runs exits with its own code, which may be one
# of these; GateOutcome.status, not the exit code, tells the two apart.
EXIT_CONFIG_ERROR = 2
EXIT_BLOCKED = 100
EXIT_TARGET_UNAVAILABLE = 101
EXIT_REJECTED = 102
EXIT_NOT_STARTED = 127
EXIT_CANCELLED = 130

# Content display truncation limits
CONTENT_PREVIEW_LENGTH = 200


def truncate(text: str, max_length: int = CONTENT_PREVIEW_LENGTH) -> str:
    """Truncate text with ellipsis if it exceeds max_length."""
    if len(text) > max_length:
        return text[:max_length] + "..."
    return text
