"""Text helpers shared by the formatter, the config layer and the device."""

import unicodedata

ENCODING = "utf-8"


def normalize_text(value) -> str:
    """Return *value* as NFC-normalized text.

    Bytes are decoded as UTF-8 with replacement characters, ``None`` becomes
    an empty string and anything else goes through ``str()``.
    """
    if value is None:
        return ""
    if isinstance(value, (bytes, bytearray)):
        value = bytes(value).decode(ENCODING, errors="replace")
    elif not isinstance(value, str):
        value = str(value)
    return unicodedata.normalize("NFC", value)


def is_blank(value) -> bool:
    """True for ``None`` and for values whose text is only whitespace."""
    return not normalize_text(value).strip()


def presence(value) -> str | None:
    """Stripped text of *value*, or ``None`` when it is blank."""
    text = normalize_text(value).strip()
    return text or None


def squish(value) -> str | None:
    """Collapse runs of whitespace into single spaces; blank becomes ``None``."""
    return " ".join(normalize_text(value).split()) or None


def byte_size(text: str) -> int:
    return len(text.encode(ENCODING))
