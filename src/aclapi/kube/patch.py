"""JSON merge patches (RFC 7386)."""

import copy
from typing import Any


def create_merge_patch(original: dict[str, Any], modified: dict[str, Any]) -> dict[str, Any]:
    """
    Compute the merge patch that turns original into modified.

    Removed keys map to None; nested objects are diffed recursively;
    any other changed value (including lists) is replaced whole.

    Args:
        original: Document before the change
        modified: Document after the change

    Returns:
        The minimal merge patch, empty when the documents are equal
    """
    patch: dict[str, Any] = {}
    for key in original:
        if key not in modified:
            patch[key] = None
    for key, value in modified.items():
        if key not in original:
            patch[key] = copy.deepcopy(value)
            continue
        before = original[key]
        if isinstance(before, dict) and isinstance(value, dict):
            nested = create_merge_patch(before, value)
            if nested:
                patch[key] = nested
        elif before != value:
            patch[key] = copy.deepcopy(value)
    return patch
