"""Semantic versions and Cargo-style version requirements."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import total_ordering
from typing import Any

SEMVER_RE = re.compile(
    r"^v?(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$"
)
# partial versions are allowed in requirements: "1", "1.2", "1.*", "1.2.x"
PARTIAL_RE = re.compile(
    r"^(\d+|[*xX])(?:\.(\d+|[*xX]))?(?:\.(\d+|[*xX]))?"
    r"(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?"
    r"(?:\+[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*)?$"
)
OP_RE = re.compile(r"^(\^|~|=|>=|<=|>|<)?\s*(.+)$")


def _pre_key(pre: tuple[str, ...]) -> tuple[Any, ...]:
    # numeric identifiers sort before alphanumeric ones
    return tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in pre)


@total_ordering
@dataclass(frozen=True)
class Version:
    """A semantic version. Build metadata is kept but ignored when comparing."""

    major: int
    minor: int
    patch: int
    pre: tuple[str, ...] = ()
    build: str = field(default="", compare=False)

    @classmethod
    def parse(cls, raw: Any) -> Version:
        if isinstance(raw, Version):
            return raw
        if not isinstance(raw, str):
            raise ValueError(f"version must be a string, got {type(raw).__name__}")
        m = SEMVER_RE.match(raw.strip())
        if not m:
            raise ValueError(f"invalid semantic version: {raw!r}")
        pre = tuple(m.group(4).split(".")) if m.group(4) else ()
        for ident in pre:
            if ident.isdigit() and len(ident) > 1 and ident.startswith("0"):
                raise ValueError(f"invalid semantic version: {raw!r} (leading zero in pre-release)")
        return cls(int(m.group(1)), int(m.group(2)), int(m.group(3)), pre, m.group(5) or "")

    @property
    def release(self) -> tuple[int, int, int]:
        return (self.major, self.minor, self.patch)

    @property
    def is_prerelease(self) -> bool:
        return bool(self.pre)

    def _key(self) -> tuple[Any, ...]:
        # a release sorts after all of its pre-releases
        return (self.release, 0 if self.pre else 1, _pre_key(self.pre))

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._key() < other._key()

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor}.{self.patch}"
        if self.pre:
            text += "-" + ".".join(self.pre)
        return text


@dataclass(frozen=True)
class Comparator:
    op: str
    major: int | None
    minor: int | None
    patch: int | None
    pre: tuple[str, ...] = ()

    def _lower(self) -> Version:
        return Version(self.major or 0, self.minor or 0, self.patch or 0, self.pre)

    def matches(self, v: Version) -> bool:
        major, minor, patch = self.major, self.minor, self.patch
        if self.op == "*":
            return True
        if self.op == "=":
            if v.major != major:
                return False
            if minor is not None and v.minor != minor:
                return False
            if patch is not None and (v.patch != patch or v.pre != self.pre):
                return False
            return True
        if self.op in (">", ">=", "<", "<="):
            low = self._lower()
            if self.op == ">=":
                return v >= low
            if self.op == "<":
                return v < low
            if minor is None or patch is None:
                # ">1" means ">=2.0.0", "<=1.2" means "<1.3.0"
                upper = Version(major + 1, 0, 0) if minor is None else Version(major, minor + 1, 0)
                return v >= upper if self.op == ">" else v < upper
            return v > low if self.op == ">" else v <= low
        if self.op == "~":
            if v < self._lower():
                return False
            if minor is None:
                return v.major == major
            return (v.major, v.minor) == (major, minor)
        # caret
        if v < self._lower():
            return False
        if major > 0 or minor is None:
            return v.major == major
        if minor > 0 or patch is None:
            return (v.major, v.minor) == (major, minor)
        return v.release == (major, minor, patch)

    def __str__(self) -> str:
        if self.op == "*":
            return "*"
        parts = [str(p) for p in (self.major, self.minor, self.patch) if p is not None]
        text = ".".join(parts)
        if self.pre:
            text += "-" + ".".join(self.pre)
        return f"{self.op}{text}"


@dataclass(frozen=True)
class VersionReq:
    """A comma separated list of comparators, all of which must match."""

    comparators: tuple[Comparator, ...]

    @classmethod
    def parse(cls, raw: Any) -> VersionReq:
        if isinstance(raw, VersionReq):
            return raw
        if not isinstance(raw, str) or not raw.strip():
            raise ValueError(f"invalid version requirement: {raw!r}")
        comparators = tuple(_parse_comparator(part.strip(), raw) for part in raw.split(","))
        return cls(comparators)

    def matches(self, version: Version | str) -> bool:
        v = Version.parse(version)
        if not all(c.matches(v) for c in self.comparators):
            return False
        if not v.is_prerelease:
            return True
        # pre-releases only match when a comparator opts in on the same release
        return any(c.pre and (c.major, c.minor, c.patch) == v.release for c in self.comparators)

    def __str__(self) -> str:
        return ", ".join(str(c) for c in self.comparators)


def _parse_comparator(text: str, raw: str) -> Comparator:
    if text in ("*", "x", "X"):
        return Comparator("*", None, None, None)
    m = OP_RE.match(text)
    if not m:
        raise ValueError(f"invalid version requirement: {raw!r}")
    op = m.group(1) or "^"
    pm = PARTIAL_RE.match(m.group(2).strip())
    if not pm:
        raise ValueError(f"invalid version requirement: {raw!r}")
    nums: list[int | None] = []
    wildcard = False
    for group in pm.group(1, 2, 3):
        if group is None or group in ("*", "x", "X"):
            wildcard = wildcard or group is not None
            nums.append(None)
        elif wildcard or (nums and nums[-1] is None):
            raise ValueError(f"invalid version requirement: {raw!r}")
        else:
            nums.append(int(group))
    major, minor, patch = nums
    if major is None:
        return Comparator("*", None, None, None)
    pre = tuple(pm.group(4).split(".")) if pm.group(4) else ()
    if pre and patch is None:
        raise ValueError(f"invalid version requirement: {raw!r}")
    if wildcard:
        # "1.*" behaves like "=1"
        op = "=" if op == "^" else op
    return Comparator(op, major, minor, patch, pre)


__all__ = ["Comparator", "Version", "VersionReq"]
