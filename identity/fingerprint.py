"""Anonymous browser fingerprint derived from request signals."""

from __future__ import annotations

import string
from dataclasses import dataclass

FINGERPRINT_HEADER = "X-Fingerprint"
SCREEN_HEADER = "X-Screen"
TIMEZONE_HEADER = "X-Timezone-Offset"
CANVAS_HEADER = "X-Canvas-Signature"

_BASE36_DIGITS = string.digits + string.ascii_lowercase


@dataclass(frozen=True)
class FingerprintSignals:
    user_agent: str = ""
    language: str = ""
    screen: str = ""
    timezone_offset: str = ""
    canvas_signature: str = ""

    def joined(self) -> str:
        return "|".join(
            [
                self.user_agent,
                self.language,
                self.screen,
                self.timezone_offset,
                self.canvas_signature,
            ]
        )


def signals_from_request(req) -> FingerprintSignals:
    accept_language = req.headers.get("Accept-Language", "")
    language = accept_language.split(",")[0].split(";")[0].strip()
    return FingerprintSignals(
        user_agent=req.headers.get("User-Agent", ""),
        language=language,
        screen=req.headers.get(SCREEN_HEADER, ""),
        timezone_offset=req.headers.get(TIMEZONE_HEADER, ""),
        canvas_signature=req.headers.get(CANVAS_HEADER, ""),
    )


def derive_fingerprint(signals: FingerprintSignals) -> str:
    """Reduce the joined signals to a short, stable base-36 token."""
    return _to_base36(abs(_string_hash(signals.joined())))


def fingerprint_from_request(req) -> str:
    explicit = (req.headers.get(FINGERPRINT_HEADER) or "").strip()
    if explicit:
        return explicit[:64]
    return derive_fingerprint(signals_from_request(req))


def _string_hash(text: str) -> int:
    # 31-multiplier hash over UTF-16 code units, wrapped to a signed 32-bit int.
    value = 0
    data = text.encode("utf-16-le")
    for index in range(0, len(data), 2):
        unit = data[index] | (data[index + 1] << 8)
        value = (value * 31 + unit) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return value


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))
