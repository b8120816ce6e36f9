"""Deep packet inspection: searching flow payloads for known byte patterns."""

from __future__ import annotations

import tomllib
from collections.abc import Iterable

from aegisfw.detection_model import (
    DecodedPacket,
    DetectionContext,
    DetectionEvent,
    Detector,
    DetectorResult,
    FlowState,
)
from aegisfw.rules_model import BlockReason
from aegisfw.store_model import Severity

DPI_SCORE = 85


def _as_bytes(pattern: str | bytes) -> bytes:
    return pattern.encode("utf-8") if isinstance(pattern, str) else bytes(pattern)


class DpiDetector(Detector):
    """Flags flows whose reassembled payload contains a known pattern.

    When several patterns occur, the one whose occurrence ends first is
    reported; among those ending at the same place, the longest.
    """

    name = "dpi"
    weight = 1.8

    def __init__(self, patterns: Iterable[tuple[str, str | bytes]]) -> None:
        pairs = [(label, _as_bytes(pattern)) for label, pattern in patterns]
        self._labels = [label for label, _ in pairs]
        self._patterns = [pattern for _, pattern in pairs]

    @classmethod
    def from_toml(cls, toml_str: str) -> DpiDetector:
        """Build from ``[[patterns]]`` tables, each with a ``label`` and a ``pattern``."""
        try:
            document = tomllib.loads(toml_str)
        except tomllib.TOMLDecodeError as exc:
            raise ValueError(f"invalid DPI pattern file: {exc}") from exc
        entries = document.get("patterns")
        if not isinstance(entries, list):
            raise ValueError("DPI pattern file needs a `patterns` array")
        pairs = []
        for position, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise ValueError(f"patterns[{position}] must be a table")
            label = entry.get("label")
            pattern = entry.get("pattern")
            if not isinstance(label, str) or not isinstance(pattern, str):
                raise ValueError(f"patterns[{position}] needs string `label` and `pattern`")
            pairs.append((label, pattern))
        return cls(pairs)

    def pattern_count(self) -> int:
        return len(self._labels)

    def _find(self, haystack: bytes) -> str | None:
        best: tuple[int, int, int] | None = None
        for index, pattern in enumerate(self._patterns):
            start = haystack.find(pattern)
            if start < 0:
                continue
            candidate = (start + len(pattern), -len(pattern), index)
            if best is None or candidate < best:
                best = candidate
        return None if best is None else self._labels[best[2]]

    def inspect(
        self, packet: DecodedPacket, flow: FlowState, ctx: DetectionContext
    ) -> DetectorResult:
        if not flow.payload_buf:
            return DetectorResult.clean()
        label = self._find(bytes(flow.payload_buf))
        if label is None:
            return DetectorResult.clean()
        reason = BlockReason(code="dpi_match", description=f"DPI pattern match: {label}")
        return DetectorResult(
            score=DPI_SCORE,
            reason=reason,
            event=DetectionEvent(
                detector=self.name,
                severity=Severity.HIGH,
                reason=reason,
                metadata={"matched_pattern": label},
            ),
        )