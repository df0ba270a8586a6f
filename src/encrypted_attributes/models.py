from __future__ import annotations

from collections.abc import Iterable, Iterator, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_DEPENDENCY = "cryptography.fernet"


class EnablementState(str, Enum):
    UNSET = "unset"
    ENABLED = "enabled"
    DISABLED = "disabled"

    @classmethod
    def from_flag(cls, flag: bool | None) -> "EnablementState":
        if flag is None:
            return cls.UNSET
        if not isinstance(flag, bool):
            raise TypeError(f"enablement override must be True, False or None, got: {flag!r}")
        return cls.ENABLED if flag else cls.DISABLED


@dataclass(frozen=True)
class AttributePath:
    """Location of one attribute in a node's attribute tree.

    Segments are compared exactly; no case folding or other normalization
    is applied.
    """

    segments: tuple[str, ...]

    def __post_init__(self) -> None:
        if not isinstance(self.segments, tuple):
            raise TypeError("AttributePath.segments must be a tuple")
        if not self.segments:
            raise ValueError("AttributePath requires at least one segment")
        for segment in self.segments:
            if not isinstance(segment, str) or not segment:
                raise ValueError(f"AttributePath segments must be non-empty strings, got: {segment!r}")

    @classmethod
    def of(cls, segments: Iterable[str]) -> "AttributePath":
        if isinstance(segments, str):
            raise TypeError(f"expected a sequence of segments, got string {segments!r}; use AttributePath.parse")
        return cls(tuple(segments))

    @classmethod
    def parse(cls, dotted: str) -> "AttributePath":
        """Build a path from ``a.b.c`` notation (command-line input)."""
        return cls(tuple(dotted.split(".")))

    @classmethod
    def coerce(cls, value: "AttributePath | Sequence[str]") -> "AttributePath":
        if isinstance(value, AttributePath):
            return value
        return cls.of(value)

    @property
    def parent(self) -> tuple[str, ...]:
        return self.segments[:-1]

    @property
    def leaf(self) -> str:
        return self.segments[-1]

    def __iter__(self) -> Iterator[str]:
        return iter(self.segments)

    def __len__(self) -> int:
        return len(self.segments)

    def __str__(self) -> str:
        return ".".join(self.segments)


DEV_MODE_PATH = AttributePath(("dev_mode",))


@dataclass(slots=True)
class EncryptedAttributesConfig:
    """Settings shared by the orchestrator and the engine for one run.

    ``client_search`` is the search scope: the query the engine uses at
    create/update time to decide which other clients may decrypt a value.
    """

    local_mode: bool = False
    client_search: str | None = None
    dependency: str = DEFAULT_DEPENDENCY


class CiphertextEnvelope(BaseModel):
    """On-node representation of a value encrypted by the local engine."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    x_encrypted: Literal[True]
    cipher: Literal["fernet"]
    version: Literal[1]
    client_search: str | None = None
    token: str = Field(min_length=1)
