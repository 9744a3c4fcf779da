"""Human readable formatting for flow throughput values."""

from __future__ import annotations

import math

_UNITS = ("b", "Kb", "Mb", "Gb", "Tb", "Pb")


def bits_to_size(bits: object) -> str:
    """Format a bit count using decimal units with one decimal place.

    ``0``, negative and non-numeric inputs render as ``"0 b"``.
    """

    try:
        value = float(bits)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return "0 b"
    if math.isnan(value) or value <= 0:
        return "0 b"
    if math.isinf(value):
        return f"inf {_UNITS[-1]}"
    exponent = min(int(math.floor(math.log10(value) / 3)), len(_UNITS) - 1)
    exponent = max(exponent, 0)
    scaled = value / (1000 ** exponent)
    if exponent < len(_UNITS) - 1 and round(scaled, 1 if exponent else 0) >= 1000:
        exponent += 1
        scaled = value / (1000 ** exponent)
    if exponent == 0:
        return f"{int(round(scaled))} {_UNITS[0]}"
    return f"{scaled:.1f} {_UNITS[exponent]}"


__all__ = ["bits_to_size"]
