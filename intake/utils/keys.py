"""User namespace keys.

Every user gets one directory under the conversations root. The directory name is
derived from the email: ASCII letters and digits are kept, every other UTF-8 byte
is written as ``_`` followed by two lower-case hex digits. Since ``_`` itself is
escaped, the mapping is injective and can be reversed.
"""

import re
import string

_SAFE = frozenset((string.ascii_letters + string.digits).encode("ascii"))
_ESCAPE = re.compile(r"_([0-9a-f]{2})")


def user_key(email: str) -> str:
    """
    Derive the storage key for a user identifier.

    Args:
        email: User email (already validated upstream)

    Returns:
        Filesystem-safe key, e.g. ``jane_2edoe_40example_2ecom``
    """
    if not email:
        raise ValueError("User identifier must not be empty")

    out = []
    for byte in email.encode("utf-8"):
        if byte in _SAFE:
            out.append(chr(byte))
        else:
            out.append(f"_{byte:02x}")
    return "".join(out)


def email_from_key(key: str) -> str:
    """
    Reverse :func:`user_key`.

    Raises:
        ValueError: If the key was not produced by ``user_key``
    """
    raw = bytearray()
    pos = 0
    while pos < len(key):
        char = key[pos]
        if char == "_":
            match = _ESCAPE.match(key, pos)
            if not match:
                raise ValueError(f"Malformed user key: {key}")
            raw.append(int(match.group(1), 16))
            pos = match.end()
        else:
            if ord(char) not in _SAFE:
                raise ValueError(f"Malformed user key: {key}")
            raw.append(ord(char))
            pos += 1
    return raw.decode("utf-8")
