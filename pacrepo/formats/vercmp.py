"""Version comparison compatible with the pacman ``vercmp`` utility.

Versions use the ``[epoch:]version[-release]`` grammar::

    1.0a < 1.0b < 1.0beta < 1.0p < 1.0pre < 1.0rc < 1.0 < 1.0.a < 1.0.1
    1 < 1.0 < 1.1 < 1.1.1 < 1.2 < 2.0 < 3.0.0

An epoch overrules every other part of the version. The release is only
compared when both versions carry one, so ``1.5-1`` and ``1.5`` are
equal while ``1.5-1 < 1.5-2``. This lets versioned dependencies omit the
release.

Comparison never raises: malformed epoch or release fragments are read
as zero.
"""

import functools
import re
from typing import Callable, List, Optional, Tuple

_SEPARATORS = re.compile(r"[._+]")


def compare(a: str, b: str) -> int:
    """Compare two version strings.

    Args:
        a: First version
        b: Second version

    Returns:
        -1 if a < b, 0 if a == b, 1 if a > b
    """
    if a == b:
        return 0
    if not a:
        return -1
    if not b:
        return 1

    e1, v1, r1 = parse_evr(a.lower())
    e2, v2, r2 = parse_evr(b.lower())

    if e1 != e2:
        return _intcmp(e1, e2)

    c = _compare_versions(v1, v2)
    if c == 0 and r1 is not None and r2 is not None:
        return _intcmp(r1, r2)
    return c


def parse_evr(version: str) -> Tuple[int, str, Optional[int]]:
    """Split a version string into epoch, version and release.

    Args:
        version: Version string in ``[epoch:]version[-release]`` form

    Returns:
        Tuple of (epoch, version, release); release is None when absent
    """
    epoch = 0
    start = 0
    i = 0
    while i < len(version) and version[i].isdigit() and version[i].isascii():
        i += 1
    if i < len(version) and version[i] == ":":
        epoch = _atoi(version[:i])
        start = i + 1

    release = None
    end = len(version)
    j = len(version)
    while j > start and version[j - 1].isdigit() and version[j - 1].isascii():
        j -= 1
    if j > start and version[j - 1] == "-":
        release = _atoi(version[j:])
        end = j - 1

    return epoch, version[start:end], release


def version_key(get_version: Optional[Callable] = None):
    """Return a sort key ordering items by version.

    Args:
        get_version: Maps an item to its version string; identity if None

    Returns:
        Key function usable with ``sorted`` and ``list.sort``
    """
    if get_version is None:
        return functools.cmp_to_key(compare)
    return functools.cmp_to_key(lambda x, y: compare(get_version(x), get_version(y)))


def _compare_versions(v1: str, v2: str) -> int:
    s1 = [s for s in _SEPARATORS.split(v1) if s]
    s2 = [s for s in _SEPARATORS.split(v2) if s]

    for p1, p2 in zip(s1, s2):
        c = _compare_segment(p1, p2)
        if c != 0:
            return c

    return _intcmp(len(s1), len(s2))


def _compare_segment(s1: str, s2: str) -> int:
    if s1 == s2:
        return 0

    runs1 = _runs(s1)
    runs2 = _runs(s2)
    for (p1, num1), (p2, num2) in zip(runs1, runs2):
        if num1 != num2:
            return 1 if num1 else -1
        if num1:
            c = _intcmp(int(p1), int(p2))
        else:
            c = _strcmp(p1, p2)
        if c != 0:
            return c

    # Leftover content marks the less mature version: 1.0rc1 < 1.0
    return _intcmp(len(runs2), len(runs1))


def _runs(segment: str) -> List[Tuple[str, bool]]:
    """Decompose a segment into alternating digit and letter runs.

    A run starting with any other byte is treated as alphabetic and
    extends over the following lowercase letters.
    """
    runs = []
    i = 0
    n = len(segment)
    while i < n:
        numeric = _isdigit(segment[i])
        test = _isdigit if numeric else _isalpha
        j = i + 1
        while j < n and test(segment[j]):
            j += 1
        runs.append((segment[i:j], numeric))
        i = j
    return runs


def _isdigit(c: str) -> bool:
    return "0" <= c <= "9"


def _isalpha(c: str) -> bool:
    return "a" <= c <= "z"


def _atoi(s: str) -> int:
    try:
        return int(s)
    except ValueError:
        return 0


def _intcmp(a: int, b: int) -> int:
    if a < b:
        return -1
    if a > b:
        return 1
    return 0


def _strcmp(a: str, b: str) -> int:
    ab = a.encode("utf-8")
    bb = b.encode("utf-8")
    if ab < bb:
        return -1
    if ab > bb:
        return 1
    return 0
