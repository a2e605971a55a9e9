#!/usr/bin/env python3
# uid_policy.py
"""
Which process owners are visible in the process list.
Pure functions: no I/O, the caller supplies its own UID.
"""

from typing import FrozenSet, Optional

MODE_ALL = 'all'
MODE_USER = 'user'
MODE_USER_ROOT = 'user+root'


def parse_uid_list(raw: str) -> FrozenSet[int]:
    """Parse "5, 7,7" into {5, 7}, ignoring anything non-numeric"""
    uids = set()
    for part in raw.split(','):
        part = part.strip()
        if not part:
            continue
        try:
            uids.add(int(part))
        except ValueError:
            continue
    return frozenset(uids)


def build_allowed_uids(mode: Optional[str], explicit_uids: Optional[str], own_uid: int) -> Optional[FrozenSet[int]]:
    """
    Resolve the UID allow-list.

    Args:
        mode: 'all', 'user' or 'user+root' (unknown values behave as 'all')
        explicit_uids: comma separated UID list; takes precedence over mode
        own_uid: UID of the running process

    Returns:
        frozenset of allowed UIDs, or None meaning every UID passes
    """
    if explicit_uids and explicit_uids.strip():
        uids = parse_uid_list(explicit_uids)
        return uids or frozenset({own_uid})

    mode = (mode or MODE_ALL).strip().lower()
    if mode == MODE_USER:
        return frozenset({own_uid})
    if mode == MODE_USER_ROOT:
        return frozenset({own_uid, 0})
    return None


def is_uid_allowed(uid: Optional[int], allowed: Optional[FrozenSet[int]]) -> bool:
    if allowed is None:
        return True
    return uid is not None and uid in allowed
