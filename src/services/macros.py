"""Text expansion for transcription macros."""

from __future__ import annotations

import re
from typing import Any, Dict, Iterable


def expand_macros(text: str, macros: Iterable[Dict[str, Any]]) -> str:
    """Replace whole-word trigger names with their replacement text.

    Matching is case-insensitive and the longest trigger wins, so ``"normal
    chest"`` expands before ``"normal"``. Inactive macros are skipped.
    """

    active = [
        macro
        for macro in macros
        if macro.get("is_active", True) and macro.get("name") and macro.get("replacement_text")
    ]
    if not text or not active:
        return text

    replacements = {macro["name"].strip().lower(): macro["replacement_text"] for macro in active}
    triggers = sorted(replacements, key=len, reverse=True)
    # Groups are named by trigger index: a case-insensitive match does not
    # always lower-case back to its trigger ("ſ" matches "s").
    pattern = re.compile(
        r"(?<!\w)(?:"
        + "|".join(f"(?P<t{index}>{re.escape(trigger)})" for index, trigger in enumerate(triggers))
        + r")(?!\w)",
        re.IGNORECASE,
    )
    return pattern.sub(lambda match: replacements[triggers[int(match.lastgroup[1:])]], text)
