import hmac


def secret_matches(expected: str, provided: str | None) -> bool:
    """Constant-time check of a shared secret. An empty `expected` disables the check."""
    if not expected:
        return True
    if provided is None:
        return False
    return hmac.compare_digest(expected.encode(), provided.encode())
