"""
Deterministic, collision-free naming.

Maps the display name of a flow node to a file system safe name that is
unique within its folder. Collisions are resolved by suffixing " (n)" in the
order names are requested, so the result is stable for a fixed input order.
"""

import posixpath
import re
from typing import Dict

from ..models.flows import DEFAULT_FOLDER_NAME

# Path separators and leading dots would escape the folder the name belongs to
_SEPARATORS = re.compile(r"[/\\]")
_LEADING_DOTS = re.compile(r"^\.+")

# Used for names that are empty once sanitized
EMPTY_NAME = "-"


def new_name_registry() -> Dict[str, int]:
    """
    Create an empty registry of claimed names.

    The default folder is reserved up front so that no tab or subflow can
    take its name in the global scope.
    """
    return {DEFAULT_FOLDER_NAME: 1}


def sanitize_name(name: str, scope: str, seen: Dict[str, int]) -> str:
    """
    Return a unique, file system safe version of ``name`` within ``scope``.

    Args:
        name: Raw display name
        scope: Folder name the name lives in ("" for the global folder scope)
        seen: Registry of scoped name -> next suffix, mutated in place

    Returns:
        The name unchanged on first use, otherwise the name with a " (n)" suffix

    Example:
        Two tabs named "Flow" resolve to "Flow" and "Flow (1)".
    """
    name = _SEPARATORS.sub("-", name)
    name = _LEADING_DOTS.sub(lambda match: "-" * len(match.group()), name) or EMPTY_NAME
    scoped_name = posixpath.join(scope, name)

    count = seen.get(scoped_name)
    if not count:
        seen[scoped_name] = 1
        return name

    # Suffixed names are claimed too, so a later raw "Flow (1)" cannot collide
    candidate = f"{name} ({count})"
    while posixpath.join(scope, candidate) in seen:
        count += 1
        candidate = f"{name} ({count})"

    seen[scoped_name] = count + 1
    seen[posixpath.join(scope, candidate)] = 1
    return candidate
