import hashlib
from typing import Optional


def cookie_fingerprint(cookie: Optional[str]) -> str:
    """Provide a stable, low-leak cookie header identifier for logs."""
    if not cookie:
        return "<empty>"
    digest = hashlib.sha256(cookie.encode("utf-8")).hexdigest()[:12]
    names = sorted(
        pair.split("=", 1)[0].strip() for pair in cookie.split(";") if "=" in pair
    )
    return f"len={len(cookie)} sha256={digest} names={','.join(names)}"
