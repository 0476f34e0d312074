from __future__ import annotations

import re

"""Placement ordering used by program winners and prize assignments."""

__all__ = [
    "DEFAULT_PLACEMENT",
    "STANDARD_PLACEMENTS",
    "canonical_placement",
    "placement_order",
]

STANDARD_PLACEMENTS: dict[str, int] = {
    "1st Place": 1,
    "2nd Place": 2,
    "3rd Place": 3,
    "Participation": 10,
    "Special Award": 15,
    "Consolation": 20,
}

DEFAULT_PLACEMENT = "Participation"
CUSTOM_PLACEMENT_ORDER = 100

_ORDINAL = re.compile(r"(\d+)(st|nd|rd|th)", re.IGNORECASE)


def placement_order(placement: str) -> int:
    """Sort order for a placement label.

    Standard labels map to their fixed order, anything containing an ordinal
    ("4th", "5th Place") sorts by that number, the rest go last (100).
    """
    for label, order in STANDARD_PLACEMENTS.items():
        if label.casefold() == placement.strip().casefold():
            return order
    match = _ORDINAL.search(placement)
    if match:
        return int(match.group(1))
    return CUSTOM_PLACEMENT_ORDER


def canonical_placement(placement: str) -> str:
    """Return the standard spelling when the label is a standard placement."""
    for label in STANDARD_PLACEMENTS:
        if label.casefold() == placement.strip().casefold():
            return label
    return placement.strip()
