"""Lookups in colon-delimited account databases.

``/etc/passwd`` and ``/etc/group`` share a layout where the first field is
the name and the third field is the numeric id.
"""

from __future__ import annotations

from boxbuild.errors import LookupNotFoundError

PASSWD_PATH = "/etc/passwd"
GROUP_PATH = "/etc/group"


def lookup_id(content: str, name: str, kind: str) -> str:
    """Find the numeric id of a name in passwd/group style content.

    Args:
        content: File content, one record per line.
        name: User or group name to look up.
        kind: "user" or "group", for error messages.

    Returns:
        The id field of the first matching record.

    Raises:
        LookupNotFoundError: If no record has the name.
    """
    for line in content.splitlines():
        if not line or line.startswith("#"):
            continue
        parts = line.split(":")
        if len(parts) >= 3 and parts[0] == name:
            return parts[2]
    raise LookupNotFoundError(kind, name)


def lookup_uid(content: str, name: str) -> str:
    """Find a user id in ``/etc/passwd`` content."""
    return lookup_id(content, name, "user")


def lookup_gid(content: str, name: str) -> str:
    """Find a group id in ``/etc/group`` content."""
    return lookup_id(content, name, "group")


__all__ = ["GROUP_PATH", "PASSWD_PATH", "lookup_gid", "lookup_id", "lookup_uid"]
