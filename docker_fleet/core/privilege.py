"""Privilege-elevation policy for remote commands.

Callers decide whether to apply it; classification only ever prepends
``sudo`` and never rewrites the command itself.
"""

import re
import shlex

SUDO_PREFIX = "sudo "

# Administrative verbs that need root on a typical non-root deploy user
ELEVATED_COMMANDS = frozenset(
    {
        # package managers
        "apt",
        "apt-get",
        "dpkg",
        "yum",
        "dnf",
        "rpm",
        "apk",
        "zypper",
        "pacman",
        "snap",
        # service control
        "systemctl",
        "service",
        "journalctl",
        "reboot",
        "shutdown",
        # user/group management
        "useradd",
        "userdel",
        "usermod",
        "groupadd",
        "groupdel",
        "groupmod",
        "passwd",
        "chpasswd",
        "visudo",
        # firewall tools
        "ufw",
        "iptables",
        "ip6tables",
        "nft",
        "firewall-cmd",
        # filesystem administration
        "mount",
        "umount",
        "chown",
        "chgrp",
        "chmod",
    }
)

# Paths that a non-root user cannot normally read or write
PROTECTED_PREFIXES = (
    "/etc/",
    "/var/log/",
    "/root/",
    "/var/lib/docker/",
    "/usr/",
    "/boot/",
)

_SEGMENT_SPLIT = re.compile(r"&&|\|\||;|\|")


def _tokens(segment: str) -> list[str]:
    try:
        return shlex.split(segment)
    except ValueError:
        return segment.split()


def needs_elevation(command: str) -> bool:
    """Classify a command as needing root.

    True when any segment of a compound command starts with an administrative
    verb, or any argument targets a protected path prefix.
    """
    for segment in _SEGMENT_SPLIT.split(command):
        tokens = _tokens(segment.strip())
        if not tokens:
            continue
        if tokens[0] == "sudo":
            tokens = tokens[1:]
            if not tokens:
                continue
        if tokens[0].rsplit("/", 1)[-1] in ELEVATED_COMMANDS:
            return True
        for token in tokens:
            path = token.split("=", 1)[-1]
            if path.startswith(PROTECTED_PREFIXES) or path.rstrip("/") + "/" in PROTECTED_PREFIXES:
                return True
    return False


def with_elevation(command: str, force: bool = False) -> str:
    """Prefix ``sudo`` when the command needs it (or ``force``), never twice."""
    if command.lstrip().startswith(SUDO_PREFIX):
        return command
    if force or needs_elevation(command):
        return SUDO_PREFIX + command
    return command
