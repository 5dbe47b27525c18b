import re

INT_LITERAL = re.compile(r"^-?(?:0[xX][0-9a-fA-F]+|\d+)$")


def is_int_literal(text):
    return bool(text) and INT_LITERAL.match(text.strip()) is not None


def parse_int_literal(text):
    """``$1``, ``#1``, ``0x10``, ``-3`` -> int; anything else -> None."""
    if text is None:
        return None
    raw = str(text).strip()
    if raw[:1] in ("$", "#"):
        raw = raw[1:]
    if not INT_LITERAL.match(raw):
        return None
    return int(raw, 16) if "x" in raw.lower() else int(raw)


def normalize_literal(literal):
    text = (literal or "").strip().lower()
    if text.startswith("+"):
        text = text[1:]
    return text
