"""
Change classification and the 75% advisory math.

Both functions are pure: same inputs, same answer, no I/O.
"""

import math

from .models import Advisory, CourseCounter, EventKind

THRESHOLD = 0.75

STATUS_EMOJI = {
    EventKind.PRESENT: "✅",
    EventKind.ABSENT: "❌",
    EventKind.UNKNOWN: "❔",
}


# --- Classification ---
def classify(old, new):
    """Maps an (old, new) counter pair to an EventKind. ``old`` may be None for a new course."""
    old_present = (old.present if old else 0) or 0
    old_total = (old.total if old else 0) or 0

    if new.present == old_present and new.total == old_total:
        return EventKind.NO_CHANGE
    # Present went up without a new lecture: don't claim attendance.
    if new.total == old_total and new.present > old_present:
        return EventKind.UNKNOWN
    if new.total > old_total and new.present > old_present:
        return EventKind.PRESENT
    if new.total > old_total and new.present == old_present:
        return EventKind.ABSENT
    return EventKind.UNKNOWN


# --- Advisory ---
def advise(present, total):
    """Percentage plus either the streak needed to reach 75% or the lectures that can be skipped."""
    percentage = (present / total * 100) if total > 0 else 0.0
    if percentage < THRESHOLD * 100:
        streak = math.ceil((THRESHOLD * total - present) / (1 - THRESHOLD))
        return Advisory(percentage=percentage, required_streak=max(0, streak))
    skips = math.floor(present / THRESHOLD - total)
    return Advisory(percentage=percentage, safe_skips=max(0, skips))


# --- Formatting ---
def format_message(course_name, counter, kind, advisory=None):
    """Builds the Markdown notification text for one course event."""
    if advisory is None:
        advisory = advise(counter.present, counter.total)
    emoji = STATUS_EMOJI.get(kind, "❔")
    lines = [
        f"📘 *{course_name}*",
        f"{emoji} Marked as *{kind.value}*",
        f"Attendance: {counter.present}/{counter.total} ({advisory.percentage:.2f}%)",
    ]
    if advisory.below_threshold:
        lines.append(
            f"⚠️ Below 75%! You must attend at least {advisory.required_streak} more lecture(s) in a row."
        )
    else:
        lines.append(f"✅ Safe! You can skip up to {advisory.safe_skips} lecture(s) while staying ≥75%.")
    return "\n".join(lines)


def extract_counter(course):
    """Pulls present/total out of the first completion-detail record. Returns None if there is none."""
    details = course.get("studentCourseCompDetails") or []
    if not details:
        return None
    first = details[0] or {}
    return CourseCounter(
        present=int(first.get("presentLecture") or 0),
        total=int(first.get("totalLecture") or 0),
    )
