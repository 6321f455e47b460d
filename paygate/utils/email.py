"""
Payer email helpers. Some processors redact the payer address on certain payment
methods; the redacted form is a run of X characters.
"""
MASKED_EMAIL_SENTINEL = "XXXXXXXXXXX"
MASKED_EMAIL_MARKER = "XXX"


def is_masked_email(email: str | None) -> bool:
    if not email:
        return False
    return email == MASKED_EMAIL_SENTINEL or MASKED_EMAIL_MARKER in email


def is_real_email(email: str | None) -> bool:
    """Non-empty, not masked and shaped like an address."""
    if not email or is_masked_email(email):
        return False
    return "@" in email


def pick_known_email(*candidates: str | None) -> str | None:
    """First real address among candidates (payer email first, stored email next)."""
    for candidate in candidates:
        if is_real_email(candidate):
            return candidate
    return None


def display_name(email: str, name: str | None = None) -> str:
    """Full name if given, otherwise the local part of the address."""
    if name and name.strip():
        return name.strip()
    return email.split("@")[0]
