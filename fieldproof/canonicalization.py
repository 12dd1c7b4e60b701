"""
Fieldproof Canonical JSON Encoding

Produces the exact bytes that are signed at capture time and re-derived at
verification time. Two independent implementations must agree byte for byte,
so the rules follow what a browser's JSON.stringify emits once keys are
sorted:

- Object keys sorted by UTF-16 code units, recursively
- No whitespace between tokens (compact form)
- UTF-8 encoding, no BOM
- Minimal JSON string escaping
- Numbers rendered with the ECMAScript Number-to-String rule
- Arrays preserve order
"""

import json
import math
from typing import Any, Dict, List, Union

# Integers at or above this magnitude are not exact in an IEEE double
MAX_SAFE_INTEGER = 2 ** 53


def canonicalize(obj: Any) -> bytes:
    """
    Convert an object to canonical JSON bytes.

    Returns:
        UTF-8 encoded bytes of canonical JSON
    """
    return _canonicalize_value(obj).encode('utf-8')


def canonicalize_str(obj: Any) -> str:
    """Return canonical JSON as string."""
    return _canonicalize_value(obj)


def signing_view(report: Dict[str, Any]) -> Dict[str, Any]:
    """
    Reduce a report to the part covered by its signature.

    Only the payload plus the image hash and mime type are signed, so a
    filename or storage path attached later leaves the signature intact.
    """
    media = report.get("media") or {}
    return {
        "payload": report.get("payload"),
        "media": {
            "img_hash": media.get("img_hash"),
            "img_mime": media.get("img_mime"),
        },
    }


def format_number(value: Union[int, float]) -> str:
    """
    Render a number the way ECMAScript's Number.prototype.toString does.

    Integral floats drop their fraction (1.0 -> "1"), plain notation is used
    while the decimal exponent stays within [-7, 21), and scientific notation
    otherwise ("1e+21", "1.5e-7"). Integers beyond 2**53 are first rounded to
    the nearest double, as a JavaScript Number would be.
    """
    if isinstance(value, int):
        if abs(value) < MAX_SAFE_INTEGER:
            return str(value)
        try:
            value = float(value)
        except OverflowError as e:
            raise ValueError(f"Cannot canonicalize {value.bit_length()}-bit integer") from e
    if math.isnan(value) or math.isinf(value):
        raise ValueError(f"Cannot canonicalize non-finite number: {value!r}")
    if value == 0:
        return "0"

    sign = "-" if value < 0 else ""
    digits, point = _shortest_digits(abs(value))
    k = len(digits)

    if k <= point <= 21:
        body = digits + "0" * (point - k)
    elif 0 < point <= 21:
        body = digits[:point] + "." + digits[point:]
    elif -6 < point <= 0:
        body = "0." + "0" * (-point) + digits
    else:
        exponent = point - 1
        exp_sign = "+" if exponent >= 0 else "-"
        mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
        body = f"{mantissa}e{exp_sign}{abs(exponent)}"
    return sign + body


def _shortest_digits(value: float):
    """
    Split a positive float into (significant digits, decimal point position).

    The value equals 0.<digits> * 10**point. repr() already yields the
    shortest round-tripping digit string.
    """
    text = repr(value)
    mantissa, _, exp = text.partition("e")
    exponent = int(exp) if exp else 0
    int_part, _, frac_part = mantissa.partition(".")
    combined = int_part + frac_part
    stripped = combined.lstrip("0")
    leading = len(combined) - len(stripped)
    digits = stripped.rstrip("0") or "0"
    point = len(int_part) + exponent - leading
    return digits, point


def _canonicalize_value(value: Any) -> str:
    """Recursively canonicalize a value."""
    if value is None:
        return "null"
    elif isinstance(value, bool):
        return "true" if value else "false"
    elif isinstance(value, (int, float)):
        return format_number(value)
    elif isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    elif isinstance(value, dict):
        return _canonicalize_object(value)
    elif isinstance(value, (list, tuple)):
        return _canonicalize_array(value)
    else:
        raise ValueError(f"Cannot canonicalize type: {type(value)}")


def _utf16_key(key: str) -> bytes:
    return key.encode('utf-16-be', 'surrogatepass')


def _canonicalize_object(obj: Dict[str, Any]) -> str:
    """
    Canonicalize an object by sorting keys.

    Keys are compared as UTF-16 code unit sequences, which is how JavaScript
    sorts strings; for BMP-only keys this equals code point order.
    """
    for key in obj:
        if not isinstance(key, str):
            raise ValueError(f"Object keys must be strings, got {type(key)}")
    members = [
        json.dumps(k, ensure_ascii=False) + ":" + _canonicalize_value(obj[k])
        for k in sorted(obj.keys(), key=_utf16_key)
    ]
    return "{" + ",".join(members) + "}"


def _canonicalize_array(arr: Union[List, tuple]) -> str:
    """Canonicalize an array, preserving order."""
    return "[" + ",".join(_canonicalize_value(item) for item in arr) + "]"
