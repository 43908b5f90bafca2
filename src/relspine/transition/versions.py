"""Version parsing and transition risk classification.

A release's app version is a dot-separated, four-segment numeric string
(``6.2.1.1``), optionally followed by an iFix marker (``6.2.1.1_2``).
This module turns two such strings into a risk tier:

    ========  ==========================  ===========
    Tier      Condition                   Schema risk
    ========  ==========================  ===========
    MAJOR     ``major.minor`` differs     yes (migration required)
    MINOR     ``patch`` differs           yes (migration possible)
    PATCH     only ``build`` differs      no
    UNKNOWN   rollback target unreadable  yes (conservative)
    ========  ==========================  ===========

Comparison (:func:`compare_versions`), tier derivation (:func:`tier_for`)
and the tier→schema-risk policy (:func:`schema_risk_for`) are separate
pure functions; :func:`classify` composes them and adds the direction
checks and the operator-facing reason.

Example::

    >>> c = classify(VersionIdentifier.parse("6.2.1.1"),
    ...              VersionIdentifier.parse("6.2.2.0"),
    ...              Direction.UPGRADE)
    >>> c.tier, c.schema_risk
    (<RiskTier.MINOR: 'MINOR'>, True)
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum

from relspine.core.errors import InputError

_SEGMENT_RE = re.compile(r"^\d+$")
SEGMENT_COUNT = 4


class Direction(str, Enum):
    """Which way a transition moves a release."""

    UPGRADE = "upgrade"
    ROLLBACK = "rollback"


class RiskTier(str, Enum):
    """Scope of a version transition."""

    MAJOR = "MAJOR"
    MINOR = "MINOR"
    PATCH = "PATCH"
    UNKNOWN = "UNKNOWN"  # rollback only


@dataclass(frozen=True, order=True)
class VersionIdentifier:
    """Four-segment numeric version; the iFix suffix is display-only."""

    major: int
    minor: int
    patch: int
    build: int
    ifix: str | None = field(default=None, compare=False)

    @classmethod
    def parse(cls, raw: str) -> VersionIdentifier:
        """Parse ``6.2.1.1`` / ``6.2.1.1_2`` / ``6.2`` into a version.

        Missing trailing segments default to 0. Raises :class:`InputError`
        for empty, non-numeric, or over-long input.
        """
        text = (raw or "").strip()
        if not text:
            raise InputError("Version cannot be empty.", field="version", value=raw)

        core, _, ifix = text.partition("_")
        parts = core.split(".")
        if len(parts) > SEGMENT_COUNT:
            raise InputError(
                f"Version {text!r} has more than {SEGMENT_COUNT} segments.",
                field="version",
                value=raw,
            )
        if not all(_SEGMENT_RE.match(p) for p in parts):
            raise InputError(
                f"Version {text!r} is not a dot-separated numeric version (e.g. 6.2.2.0).",
                field="version",
                value=raw,
            )

        numbers = [int(p) for p in parts] + [0] * (SEGMENT_COUNT - len(parts))
        return cls(*numbers, ifix=ifix or None)

    @property
    def key(self) -> tuple[int, int, int, int]:
        return (self.major, self.minor, self.patch, self.build)

    @property
    def major_minor(self) -> str:
        return f"{self.major}.{self.minor}"

    @property
    def display(self) -> str:
        """Version including the iFix marker, if any."""
        return f"{self}_{self.ifix}" if self.ifix else str(self)

    def __str__(self) -> str:
        return ".".join(str(n) for n in self.key)


def normalize_version(raw: str) -> str:
    """Strip the iFix marker and pad to four segments: ``6.2_3`` → ``6.2.0.0``."""
    return str(VersionIdentifier.parse(raw))


@dataclass(frozen=True)
class Classification:
    """Verdict for one version pair."""

    tier: RiskTier
    schema_risk: bool
    reason: str
    direction: Direction
    current: VersionIdentifier | None = None
    target: VersionIdentifier | None = None

    @property
    def migration_required(self) -> bool:
        """Only a MAJOR move guarantees a schema migration."""
        return self.tier == RiskTier.MAJOR


# ---------------------------------------------------------------------------
# Pure building blocks
# ---------------------------------------------------------------------------


def compare_versions(a: VersionIdentifier, b: VersionIdentifier) -> int:
    """Lexicographic compare over (major, minor, patch, build): -1, 0 or 1."""
    if a.key == b.key:
        return 0
    return -1 if a.key < b.key else 1


def tier_for(current: VersionIdentifier, target: VersionIdentifier) -> RiskTier:
    """Tier of a move between two versions. Direction-independent."""
    if (current.major, current.minor) != (target.major, target.minor):
        return RiskTier.MAJOR
    if current.patch != target.patch:
        return RiskTier.MINOR
    return RiskTier.PATCH


_SCHEMA_RISK: dict[RiskTier, bool] = {
    RiskTier.MAJOR: True,
    RiskTier.MINOR: True,
    RiskTier.PATCH: False,
    RiskTier.UNKNOWN: True,
}


def schema_risk_for(tier: RiskTier) -> bool:
    """Fixed policy mapping a tier to the schema-risk flag."""
    return _SCHEMA_RISK[tier]


def _reason(
    tier: RiskTier,
    current: VersionIdentifier,
    target: VersionIdentifier,
    direction: Direction,
) -> str:
    verb = "Upgrade" if direction == Direction.UPGRADE else "Rollback"
    if tier == RiskTier.MAJOR:
        text = f"Major/minor version change ({current.major_minor} → {target.major_minor})"
        if direction == Direction.UPGRADE:
            return f"{text}; database schema migration required"
        return f"{text}; the forward upgrade migrated the database schema"
    if tier == RiskTier.MINOR:
        text = f"Patch version change ({current} → {target})"
        if direction == Direction.UPGRADE:
            return f"{text}; database schema migration may be required"
        return f"{text}; the forward upgrade may have migrated the database schema"
    return f"{verb} is fix-pack only ({current} → {target}); no database schema changes expected"


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


def classify(
    current: VersionIdentifier,
    target: VersionIdentifier,
    direction: Direction = Direction.UPGRADE,
) -> Classification:
    """Classify a move from *current* to *target*.

    Upgrades must move strictly forward: equal versions and downgrades
    raise :class:`InputError` rather than being reinterpreted as rollbacks.
    Rollbacks accept any pair.
    """
    if direction == Direction.UPGRADE:
        cmp = compare_versions(target, current)
        if cmp == 0:
            raise InputError(
                f"Target version {target} is the same as the current version. Nothing to do.",
                field="target_version",
                value=str(target),
            )
        if cmp < 0:
            raise InputError(
                f"Target version {target} is older than current {current}. "
                "Downgrades are not supported; use rollback instead.",
                field="target_version",
                value=str(target),
            )

    tier = tier_for(current, target)
    return Classification(
        tier=tier,
        schema_risk=schema_risk_for(tier),
        reason=_reason(tier, current, target, direction),
        direction=direction,
        current=current,
        target=target,
    )


def classify_rollback(
    current: VersionIdentifier | None,
    target: VersionIdentifier | None,
) -> Classification:
    """Rollback classification tolerating an unresolved version.

    Either side missing yields ``UNKNOWN`` with schema risk set, so the
    database-restore gate still fires.
    """
    if current is None or target is None:
        return Classification(
            tier=RiskTier.UNKNOWN,
            schema_risk=schema_risk_for(RiskTier.UNKNOWN),
            reason="Could not determine app versions; assuming the rollback crosses a schema boundary",
            direction=Direction.ROLLBACK,
            current=current,
            target=target,
        )
    return classify(current, target, Direction.ROLLBACK)


def parse_optional(raw: str | None) -> VersionIdentifier | None:
    """Parse a version read from the release manager, ``None`` if unreadable."""
    if raw is None:
        return None
    try:
        return VersionIdentifier.parse(raw)
    except InputError:
        return None


__all__ = [
    "Classification",
    "Direction",
    "RiskTier",
    "VersionIdentifier",
    "classify",
    "classify_rollback",
    "compare_versions",
    "normalize_version",
    "parse_optional",
    "schema_risk_for",
    "tier_for",
]
