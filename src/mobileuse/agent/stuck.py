"""Detect repeated, ineffective actions in the recent run history."""

from __future__ import annotations

from collections.abc import Sequence

STUCK_WINDOW = 3
TAP_PREFIX = "tap("


def detect_stuck_pattern(history: Sequence[str]) -> str | None:
    """Return an advisory hint when the last few actions look unproductive."""
    if len(history) < STUCK_WINDOW:
        return None

    recent = list(history[-STUCK_WINDOW:])
    if all(entry == recent[0] for entry in recent):
        return (
            f'WARNING: You\'ve tried "{recent[0]}" {STUCK_WINDOW} times with no progress.'
            " The tap coordinates may be WRONG. Try:\n"
            "1. DIFFERENT coordinates (shift by 5-10%)\n"
            "2. tapText instead of tap (if there's visible text)\n"
            "3. scroll to reveal hidden elements\n"
            "4. A completely different approach"
        )

    tap_attempts = [entry for entry in recent if entry.startswith(TAP_PREFIX)]
    if len(tap_attempts) >= 2:
        return (
            "NOTE: Multiple tap attempts detected. If tapping isn't working, the button"
            " might be at different coordinates than expected. Try adjusting by 5-10%"
            " or use tapText if visible text exists."
        )

    return None
