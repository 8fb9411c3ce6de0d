"""
In-place hardening of the SSH daemon configuration.

Directives are rewritten line by line with anchored patterns; the file is never
regenerated, and lines that do not match are left exactly as they were.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Pattern, Tuple

logger = logging.getLogger(__name__)

# (pattern, replacement, description)
SSHD_RULES: List[Tuple[Pattern[str], str, str]] = [
    (
        re.compile(r"^#PubkeyAuthentication yes\s*$"),
        "PubkeyAuthentication yes",
        "Enabling public key authentication",
    ),
    (
        re.compile(r"^PubkeyAuthentication no\s*$"),
        "PubkeyAuthentication yes",
        "Enabling public key authentication",
    ),
    (
        re.compile(r"^PasswordAuthentication yes\s*$"),
        "PasswordAuthentication no",
        "Disabling password authentication",
    ),
]


@dataclass
class SshdEdit:
    content: str
    changes: List[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.changes)


def harden_sshd_config(content: str) -> SshdEdit:
    """
    Apply the key-only login rules to sshd_config text.

    Args:
        content: Current file content

    Returns:
        SshdEdit with the new content and one description per changed line
    """
    changes: List[str] = []
    new_lines = []
    for line in content.splitlines(keepends=True):
        body = line.rstrip("\r\n")
        ending = line[len(body):]
        for pattern, replacement, description in SSHD_RULES:
            if pattern.match(body):
                logger.debug(f"sshd_config: '{body}' -> '{replacement}'")
                changes.append(f"{description} ({replacement})")
                body = replacement
                break
        new_lines.append(body + ending)
    return SshdEdit(content="".join(new_lines), changes=changes)
