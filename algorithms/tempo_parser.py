from __future__ import annotations

import re
from dataclasses import dataclass, asdict
from typing import Optional


@dataclass
class TempoComponents:
    """Parsed lifting tempo in seconds per phase."""

    eccentric: Optional[int] = None
    bottom_pause: Optional[int] = None
    concentric: Optional[int] = None
    top_pause: Optional[int] = None
    raw: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict | None) -> "TempoComponents | None":
        if data is None:
            return None
        return cls(**{k: data.get(k) for k in ("eccentric", "bottom_pause", "concentric", "top_pause", "raw")})


class TempoParser:
    """Parse and format tempo notation such as ``3010``, ``30x1`` or ``301``."""

    FOUR_DIGIT = re.compile(r"^(\d)(\d)(\d)(\d)(.*)$")
    NXM = re.compile(r"^(\d+)x(\d+)(.*)$")
    THREE_DIGIT = re.compile(r"^(\d)(\d)(\d)(.*)$")

    @classmethod
    def parse(cls, tempo: str | None) -> TempoComponents:
        """Return the components of ``tempo``.

        Unrecognised strings keep ``raw`` and leave every phase unset.
        """
        if tempo is None or not tempo.strip():
            return TempoComponents(raw=tempo)
        text = tempo.strip()
        match = cls.FOUR_DIGIT.match(text)
        if match:
            return TempoComponents(
                eccentric=int(match.group(1)),
                bottom_pause=int(match.group(2)),
                concentric=int(match.group(3)),
                top_pause=int(match.group(4)),
                raw=text,
            )
        match = cls.NXM.match(text)
        if match:
            return TempoComponents(
                eccentric=int(match.group(1)),
                bottom_pause=0,
                concentric=int(match.group(2)),
                top_pause=0,
                raw=text,
            )
        match = cls.THREE_DIGIT.match(text)
        if match:
            return TempoComponents(
                eccentric=int(match.group(1)),
                bottom_pause=int(match.group(2)),
                concentric=int(match.group(3)),
                top_pause=0,
                raw=text,
            )
        return TempoComponents(raw=text)

    @staticmethod
    def format(components: TempoComponents | None) -> str:
        """Return ``raw`` if set, otherwise the four phase digits."""
        if components is None:
            return ""
        if components.raw is not None and components.raw.strip():
            return components.raw
        return "".join(
            str(value or 0)
            for value in (
                components.eccentric,
                components.bottom_pause,
                components.concentric,
                components.top_pause,
            )
        )

    @classmethod
    def is_valid(cls, tempo: str | None) -> bool:
        if tempo is None or not tempo.strip():
            return True
        parsed = cls.parse(tempo)
        return parsed.eccentric is not None or parsed.concentric is not None

    @staticmethod
    def total_time(components: TempoComponents | None) -> int:
        """Seconds per repetition with unset phases counted as zero."""
        if components is None:
            return 0
        return sum(
            value or 0
            for value in (
                components.eccentric,
                components.bottom_pause,
                components.concentric,
                components.top_pause,
            )
        )

    @staticmethod
    def describe(components: TempoComponents | None) -> str:
        if components is None:
            return "No tempo specified"

        def part(value: Optional[int]) -> str:
            return f"{value}s" if value is not None else "unspecified"

        return (
            f"Eccentric: {part(components.eccentric)}, "
            f"Bottom pause: {part(components.bottom_pause)}, "
            f"Concentric: {part(components.concentric)}, "
            f"Top pause: {part(components.top_pause)}"
        )
