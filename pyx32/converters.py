"""Value conversions for fader levels, pan positions and channel colors.

All functions here are pure: no I/O and no module state besides the
constant tables below.
"""

import math
import re
from typing import Optional, Union

# Fader curve breakpoints as (dB, linear fader value). Between two
# breakpoints the mapping is linear; 0 dB (unity gain) sits at 0.75.
FADER_BREAKPOINTS = (
    (-90.0, 0.0),
    (-60.0, 0.025),
    (-30.0, 0.137),
    (-10.0, 0.397),
    (0.0, 0.75),
    (10.0, 1.0),
)

MIN_DB = FADER_BREAKPOINTS[0][0]
MAX_DB = FADER_BREAKPOINTS[-1][0]

DB_PRESETS = {
    "off": -math.inf,
    "minus_90": -90.0,
    "minus_60": -60.0,
    "minus_30": -30.0,
    "minus_20": -20.0,
    "minus_10": -10.0,
    "minus_6": -6.0,
    "minus_3": -3.0,
    "unity": 0.0,
    "plus_3": 3.0,
    "plus_6": 6.0,
    "plus_10": 10.0,
}


def db_to_fader(db: float) -> float:
    """Convert a level in dB (-90 to +10) to a linear fader value (0.0 to 1.0).

    Anything at or below -90 dB is treated as -inf and maps to 0.0.
    """
    if db <= MIN_DB:
        return 0.0
    if db >= MAX_DB:
        return 1.0
    for (db_lo, fader_lo), (db_hi, fader_hi) in zip(FADER_BREAKPOINTS, FADER_BREAKPOINTS[1:]):
        if db <= db_hi:
            return fader_lo + (db - db_lo) / (db_hi - db_lo) * (fader_hi - fader_lo)
    return 1.0


def fader_to_db(fader: float) -> float:
    """Convert a linear fader value (0.0 to 1.0) to dB. 0.0 is -inf."""
    if fader <= 0.0:
        return -math.inf
    if fader >= 1.0:
        return MAX_DB
    for (db_lo, fader_lo), (db_hi, fader_hi) in zip(FADER_BREAKPOINTS, FADER_BREAKPOINTS[1:]):
        if fader <= fader_hi:
            return db_lo + (fader - fader_lo) / (fader_hi - fader_lo) * (db_hi - db_lo)
    return MAX_DB


def format_db(db: float) -> str:
    """Format a dB value for display, e.g. "-∞ dB", "0.0 dB", "+6.0 dB"."""
    if db <= MIN_DB:
        return "-∞ dB"
    sign = "+" if db > 0 else ""
    return f"{sign}{db:.1f} dB"


_DB_SUFFIX = re.compile(r"\s*db$", re.IGNORECASE)


def parse_db(text: str) -> Optional[float]:
    """Parse "0", "-10 dB", "+6dB", "-inf" or "-∞" into a dB value.

    Values at or below -90 dB become -inf and values above +10 dB are
    clamped to +10. Returns None if the text is not a number.
    """
    normalized = text.strip().lower()
    if normalized in ("-inf", "-∞", "-infinity"):
        return -math.inf
    cleaned = _DB_SUFFIX.sub("", normalized).strip()
    try:
        value = float(cleaned)
    except ValueError:
        return None
    if math.isnan(value):
        return None
    if value <= MIN_DB:
        return -math.inf
    if value > MAX_DB:
        return MAX_DB
    return value


# ---------------------------------------------------------------------------
# Pan
# ---------------------------------------------------------------------------

_LR_NOTATION = re.compile(r"^([LR])(\d+)?$")


def percent_to_pan(percent: float) -> float:
    """Map -100 (hard left) .. +100 (hard right) onto 0.0 .. 1.0."""
    clamped = max(-100.0, min(100.0, percent))
    return (clamped + 100.0) / 200.0


def pan_to_percent(pan: float) -> float:
    clamped = max(0.0, min(1.0, pan))
    return clamped * 200.0 - 100.0


def lr_to_pan(notation: str) -> Optional[float]:
    """Convert "C", "L50", "R100" style notation to a linear pan value.

    A bare "L" or "R" means fully to that side. Returns None for anything
    unparseable or beyond 100.
    """
    normalized = notation.strip().upper()
    if normalized in ("C", "CENTER"):
        return 0.5
    match = _LR_NOTATION.match(normalized)
    if not match:
        return None
    side, amount_str = match.groups()
    amount = int(amount_str) if amount_str is not None else 100
    if amount > 100:
        return None
    if side == "L":
        return 0.5 - amount / 200.0
    return 0.5 + amount / 200.0


def pan_to_lr(pan: float) -> str:
    percent = pan_to_percent(pan)
    if abs(percent) < 0.5:
        return "C"
    if percent < 0:
        return f"L{round(abs(percent))}"
    return f"R{round(percent)}"


def format_pan(pan: float) -> str:
    return pan_to_lr(pan)


def parse_pan(value: Union[str, int, float]) -> Optional[float]:
    """Parse a pan position given as a percentage, LR notation or linear value.

    Numbers in -100..100 are percentages, otherwise numbers in 0..1 are
    taken as already linear. Strings are tried as LR notation first, then
    as a numeric percentage.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if math.isnan(value):
            return None
        if -100 <= value <= 100:
            return percent_to_pan(value)
        if 0 <= value <= 1:
            return float(value)
        return None

    text = value.strip()
    lr_value = lr_to_pan(text)
    if lr_value is not None:
        return lr_value
    try:
        number = float(text)
    except ValueError:
        return None
    return parse_pan(number)


# ---------------------------------------------------------------------------
# Channel colors
# ---------------------------------------------------------------------------

_BASE_COLORS = ("off", "red", "green", "yellow", "blue", "magenta", "cyan", "white")

# off=0 .. white=7, then the inverted variants off-inv=8 .. white-inv=15
COLORS = {name: code for code, name in enumerate(_BASE_COLORS)}
COLORS.update({f"{name}-inv": code + 8 for code, name in enumerate(_BASE_COLORS)})

_COLOR_NAMES = {code: name for name, code in COLORS.items()}
_COLOR_SEPARATORS = re.compile(r"[\s_-]+")


def get_color_value(color: Union[str, int]) -> Optional[int]:
    """Look up a color code by name ("red", "Blue Inv", "cyan_inv") or number."""
    if isinstance(color, int) and not isinstance(color, bool):
        return color if 0 <= color <= 15 else None
    key = _COLOR_SEPARATORS.sub("-", color.strip().lower())
    if key in COLORS:
        return COLORS[key]
    if key.isdecimal():
        code = int(key)
        if 0 <= code <= 15:
            return code
    return None


def get_color_name(code: int) -> Optional[str]:
    return _COLOR_NAMES.get(code)


def available_colors() -> list[str]:
    return list(COLORS)


def format_color(code: int) -> str:
    return get_color_name(code) or f"Color {code}"
