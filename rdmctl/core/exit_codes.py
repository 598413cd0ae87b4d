"""Process exit statuses (sysexits.h values)."""

from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    OK = 0
    USAGE = 64
    DATAERR = 65
    UNAVAILABLE = 69
    SOFTWARE = 70
    OSFILE = 72
    TEMPFAIL = 75
