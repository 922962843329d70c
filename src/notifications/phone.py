import re

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str) -> str:
    """Reduce a phone number to ``+`` followed by digits only.

    >>> normalize_phone("(816) 555-0100")
    '+8165550100'
    """
    digits = _NON_DIGITS.sub("", phone or "")
    if not digits:
        return ""
    return f"+{digits}"
