"""
Commit identity and timezone settings, read from the environment.

    SNAPGIT_AUTHOR_NAME   author and committer name (default: login name)
    SNAPGIT_AUTHOR_EMAIL  author and committer email (default: <login>@localhost)
    SNAPGIT_TZ_OFFSET     fixed '+HHMM' / '-HHMM' offset; unset means the
                          local offset in effect at the commit's timestamp
"""
import getpass
import os
import re
import time

from .types import Author

AUTHOR_NAME_VAR = 'SNAPGIT_AUTHOR_NAME'
AUTHOR_EMAIL_VAR = 'SNAPGIT_AUTHOR_EMAIL'
TZ_OFFSET_VAR = 'SNAPGIT_TZ_OFFSET'


def get_author() -> Author:
    name = os.environ.get(AUTHOR_NAME_VAR) or getpass.getuser()
    email = os.environ.get(AUTHOR_EMAIL_VAR) or f'{getpass.getuser()}@localhost'
    if '<' in name or '>' in name or '\n' in name:
        raise ValueError(f'Invalid author name {name!r}')
    if '<' in email or '>' in email or '\n' in email:
        raise ValueError(f'Invalid author email {email!r}')
    return Author(name=name, email=email)


def format_tz_offset(seconds: int) -> str:
    """3600 -> '+0100', -16200 -> '-0430'"""
    sign = '-' if seconds < 0 else '+'
    hours, minutes = divmod(abs(seconds) // 60, 60)
    return f'{sign}{hours:02d}{minutes:02d}'


def get_tz_offset(timestamp: int) -> str:
    offset = os.environ.get(TZ_OFFSET_VAR)
    if offset:
        if not re.fullmatch(r'[+-]\d{4}', offset):
            raise ValueError(f'{TZ_OFFSET_VAR} must look like +HHMM or -HHMM, got {offset!r}')
        return offset
    return format_tz_offset(time.localtime(timestamp).tm_gmtoff)
