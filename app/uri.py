"""
RFC3986 percent-encoding for Last.fm request parameters.

Only ASCII letters, digits and - _ ~ . pass through; every other character
becomes one %xx (lowercase hex) per UTF-8 byte.
"""

import string

_UNRESERVED = frozenset(string.ascii_letters + string.digits + "-_~.")


def percent_encode(value: str) -> str:
    out = []
    for ch in value:
        if ch in _UNRESERVED:
            out.append(ch)
        else:
            out.extend(f"%{b:02x}" for b in ch.encode("utf-8"))
    return "".join(out)
