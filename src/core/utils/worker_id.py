"""Worker ID generation using coolnames for unique, memorable identifiers."""

from coolname import generate_slug


def generate_worker_id(prefix: str = "") -> str:
    """Generate a unique, memorable worker ID.

    Args:
        prefix: Optional prefix (e.g., "relay-consumer")

    Returns:
        "prefix-word1-word2-word3" or "word1-word2-word3"

    Examples:
        >>> generate_worker_id("relay-consumer")
        'relay-consumer-swift-blue-falcon'
    """
    slug = generate_slug(3)
    return f"{prefix}-{slug}" if prefix else slug
