"""Pluggable malware scanning. The default scanner accepts everything."""

from __future__ import annotations

from dataclasses import dataclass
import enum
from typing import BinaryIO, Optional, Protocol


class Verdict(str, enum.Enum):
    CLEAN = "CLEAN"
    INFECTED = "INFECTED"
    ERROR = "ERROR"


@dataclass(frozen=True)
class ScanReport:
    verdict: Verdict
    engine: str
    details: Optional[str] = None

    @classmethod
    def clean(cls, engine: str) -> "ScanReport":
        return cls(Verdict.CLEAN, engine)

    @classmethod
    def infected(cls, engine: str, details: str) -> "ScanReport":
        return cls(Verdict.INFECTED, engine, details)

    @classmethod
    def error(cls, engine: str, details: str) -> "ScanReport":
        return cls(Verdict.ERROR, engine, details)


class VirusScanner(Protocol):
    def scan(self, stream: BinaryIO) -> ScanReport: ...


class NoOpVirusScanner:
    def scan(self, stream: BinaryIO) -> ScanReport:
        return ScanReport.clean("NoOp")
