"""Sudo privilege grants and sudoers drop-in rendering."""

from enum import Enum

SUDOERS_MODE = 0o440


class PrivilegeGrant(Enum):
    NONE = "none"
    SUDO_PASSWORD_REQUIRED = "sudo"
    SUDO_NOPASSWD = "sudo-nopasswd"

    @property
    def wants_sudo(self) -> bool:
        return self is not PrivilegeGrant.NONE

    @property
    def nopasswd(self) -> bool:
        return self is PrivilegeGrant.SUDO_NOPASSWD

    @classmethod
    def from_flags(cls, sudo: bool, nopasswd: bool) -> "PrivilegeGrant":
        if not sudo:
            return cls.NONE
        return cls.SUDO_NOPASSWD if nopasswd else cls.SUDO_PASSWORD_REQUIRED

    def describe(self) -> str:
        return {
            PrivilegeGrant.NONE: "no sudo access",
            PrivilegeGrant.SUDO_PASSWORD_REQUIRED: "sudo (password required)",
            PrivilegeGrant.SUDO_NOPASSWD: "passwordless sudo (NOPASSWD)",
        }[self]


def sudoers_line(username: str, grant: PrivilegeGrant) -> str:
    """
    Render the single sudoers line for a grant.

    Raises:
        ValueError: For PrivilegeGrant.NONE, which has no sudoers form
    """
    if not grant.wants_sudo:
        raise ValueError("PrivilegeGrant.NONE has no sudoers entry")
    if grant.nopasswd:
        return f"{username} ALL=(ALL) NOPASSWD: ALL\n"
    return f"{username} ALL=(ALL) ALL\n"
