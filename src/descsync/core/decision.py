"""Update decision policy.

Decides whether a description coming from the catalog may overwrite what the
target system currently stores. The only memory the agent has between runs is
the prefix marker it puts in front of every description it writes: text that
starts with the marker is ours and may be refreshed, anything else that is
non-empty belongs to a human and is preserved unless overwrite-all is on.

Everything in this module is pure.
"""

from __future__ import annotations

from enum import Enum

DEFAULT_PREFIX = "【QDIC】"


class OverwriteMode(str, Enum):
    """
    Run-wide overwrite policy.

    Values:
        IF_EMPTY: Write only into empty targets or targets we wrote before.
        ALL: The catalog always wins (as long as it has something to say).
    """

    IF_EMPTY = "OVERWRITE_IF_EMPTY"
    ALL = "OVERWRITE_ALL"

    @classmethod
    def parse(cls, value: str | None) -> "OverwriteMode":
        """Parse a configured mode; anything unrecognised means IF_EMPTY."""
        if not value:
            return cls.IF_EMPTY
        if value.strip() == cls.ALL.value:
            return cls.ALL
        return cls.IF_EMPTY


def should_update(
    mode: OverwriteMode,
    prefix: str,
    target_description: str | None,
    target_has_value: bool,
    catalog_description: str,
) -> bool:
    """
    Decide whether the catalog description should be written to the target.

    Rules are evaluated in order, first match wins:
      1) nothing to write -> False
      2) overwrite-all -> True
      3) target field absent -> True
      4) target field present but empty -> True
      5) target text carries our prefix -> True
      6) otherwise the text is user-owned -> False

    Args:
        mode: Configured overwrite mode.
        prefix: Marker prepended to every description this agent writes.
        target_description: Current text in the target (ignored when absent).
        target_has_value: False when the target field is null/unset.
        catalog_description: Description stored in the catalog.

    Returns:
        True if a write is required.
    """
    if not catalog_description:
        return False
    if mode == OverwriteMode.ALL:
        return True
    if not target_has_value:
        return True
    current = target_description or ""
    if current == "":
        return True
    if current.startswith(prefix):
        return True
    return False


def apply_prefix(prefix: str, text: str) -> str:
    """Prepend the prefix unless the text already starts with it."""
    if text.startswith(prefix):
        return text
    return f"{prefix}{text}"


def is_unchanged(current: str | None, rendered: str) -> bool:
    """Return True when writing `rendered` would not change the stored value."""
    return current is not None and current == rendered
