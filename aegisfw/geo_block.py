"""Blocking traffic by the source address's country, read from a MaxMind database."""

from __future__ import annotations

import struct
from collections.abc import Iterable
from ipaddress import IPv4Address, IPv6Address
from os import PathLike
from pathlib import Path
from typing import Any

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

GEO_BLOCK_SCORE = 75

_METADATA_MARKER = b"\xab\xcd\xefMaxMind.com"
_DATA_SEPARATOR = 16
_IPV4_IN_IPV6_BITS = 96

_EXTENDED = 0
_POINTER = 1
_UTF8 = 2
_DOUBLE = 3
_BYTES = 4
_UINT16 = 5
_UINT32 = 6
_MAP = 7
_INT32 = 8
_UINT64 = 9
_UINT128 = 10
_ARRAY = 11
_BOOLEAN = 14
_FLOAT = 15
_UNSIGNED = frozenset({_UINT16, _UINT32, _UINT64, _UINT128})

_POINTER_BASES = (0, 2048, 526336)


class _InvalidDatabase(ValueError):
    """The file is not a readable MaxMind database."""


class _Decoder:
    """Decodes values from a MaxMind data section; offsets are relative to it."""

    def __init__(self, buf: bytes) -> None:
        self._buf = buf

    def _take(self, offset: int, size: int) -> bytes:
        if offset < 0 or offset + size > len(self._buf):
            raise _InvalidDatabase(f"read of {size} bytes at {offset} runs past the data")
        return self._buf[offset : offset + size]

    def decode(self, offset: int) -> tuple[Any, int]:
        """Decode the value at ``offset``; return it and the offset after it."""
        ctrl = self._take(offset, 1)[0]
        offset += 1
        kind = ctrl >> 5
        if kind == _POINTER:
            return self._pointer(ctrl, offset)
        if kind == _EXTENDED:
            kind = 7 + self._take(offset, 1)[0]
            offset += 1
        size, offset = self._size(ctrl, offset)
        return self._value(kind, size, offset)

    def _pointer(self, ctrl: int, offset: int) -> tuple[Any, int]:
        width = ((ctrl >> 3) & 0x3) + 1
        raw = int.from_bytes(self._take(offset, width), "big")
        if width == 4:
            target = raw
        else:
            target = ((ctrl & 0x7) << (8 * width) | raw) + _POINTER_BASES[width - 1]
        value, _ = self.decode(target)
        return value, offset + width

    def _size(self, ctrl: int, offset: int) -> tuple[int, int]:
        size = ctrl & 0x1F
        if size < 29:
            return size, offset
        if size == 29:
            return 29 + self._take(offset, 1)[0], offset + 1
        if size == 30:
            return 285 + int.from_bytes(self._take(offset, 2), "big"), offset + 2
        return 65821 + int.from_bytes(self._take(offset, 3), "big"), offset + 3

    def _value(self, kind: int, size: int, offset: int) -> tuple[Any, int]:
        if kind == _UTF8:
            return self._take(offset, size).decode("utf-8"), offset + size
        if kind == _BYTES:
            return self._take(offset, size), offset + size
        if kind in _UNSIGNED:
            return int.from_bytes(self._take(offset, size), "big"), offset + size
        if kind == _INT32:
            if size > 4:
                raise _InvalidDatabase(f"int32 of {size} bytes")
            raw = self._take(offset, size).rjust(4, b"\0")
            return int.from_bytes(raw, "big", signed=True), offset + size
        if kind == _DOUBLE:
            if size != 8:
                raise _InvalidDatabase(f"double of {size} bytes")
            return struct.unpack(">d", self._take(offset, 8))[0], offset + 8
        if kind == _FLOAT:
            if size != 4:
                raise _InvalidDatabase(f"float of {size} bytes")
            return struct.unpack(">f", self._take(offset, 4))[0], offset + 4
        if kind == _BOOLEAN:
            return size != 0, offset
        if kind == _MAP:
            result: dict[Any, Any] = {}
            for _ in range(size):
                key, offset = self.decode(offset)
                value, offset = self.decode(offset)
                result[key] = value
            return result, offset
        if kind == _ARRAY:
            items = []
            for _ in range(size):
                item, offset = self.decode(offset)
                items.append(item)
            return items, offset
        raise _InvalidDatabase(f"unsupported data type {kind}")


class _MmdbReader:
    """A reader for MaxMind DB files held in memory."""

    def __init__(self, buf: bytes) -> None:
        marker_at = buf.rfind(_METADATA_MARKER)
        if marker_at < 0:
            raise _InvalidDatabase("metadata marker not found")
        metadata, _ = _Decoder(buf[marker_at + len(_METADATA_MARKER) :]).decode(0)
        if not isinstance(metadata, dict):
            raise _InvalidDatabase("metadata is not a map")
        node_count = metadata.get("node_count")
        record_size = metadata.get("record_size")
        ip_version = metadata.get("ip_version")
        if not isinstance(node_count, int) or node_count < 0:
            raise _InvalidDatabase("bad node_count")
        if record_size not in (24, 28, 32):
            raise _InvalidDatabase(f"unsupported record size {record_size!r}")
        if ip_version not in (4, 6):
            raise _InvalidDatabase(f"unsupported ip_version {ip_version!r}")
        self._node_count = node_count
        self._record_size = record_size
        self._ip_version = ip_version
        self._node_bytes = record_size // 4
        tree_size = node_count * self._node_bytes
        data_start = tree_size + _DATA_SEPARATOR
        if data_start > marker_at:
            raise _InvalidDatabase("search tree runs past the metadata")
        self._tree = buf[:tree_size]
        self._data = _Decoder(buf[data_start:marker_at])
        self._ipv4_start = 0
        if ip_version == 6:
            node = 0
            for _ in range(_IPV4_IN_IPV6_BITS):
                if node >= node_count:
                    break
                node = self._record(node, 0)
            self._ipv4_start = node

    @classmethod
    def open(cls, path: Path) -> _MmdbReader:
        return cls(path.read_bytes())

    def _record(self, node: int, bit: int) -> int:
        start = node * self._node_bytes
        raw = self._tree[start : start + self._node_bytes]
        if len(raw) != self._node_bytes:
            raise _InvalidDatabase(f"node {node} is outside the search tree")
        if self._record_size == 24:
            half = raw[3:6] if bit else raw[0:3]
            return int.from_bytes(half, "big")
        if self._record_size == 28:
            if bit:
                return ((raw[3] & 0x0F) << 24) | int.from_bytes(raw[4:7], "big")
            return ((raw[3] & 0xF0) << 20) | int.from_bytes(raw[0:3], "big")
        half = raw[4:8] if bit else raw[0:4]
        return int.from_bytes(half, "big")

    def lookup(self, address: IPv4Address | IPv6Address) -> Any:
        """The record stored for ``address``, or None if there is none."""
        if address.version == 6 and self._ip_version == 4:
            return None
        packed = address.packed
        node = self._ipv4_start if address.version == 4 else 0
        for index in range(len(packed) * 8):
            if node >= self._node_count:
                break
            bit = (packed[index >> 3] >> (7 - (index & 7))) & 1
            node = self._record(node, bit)
        if node == self._node_count:
            return None
        if node < self._node_count:
            raise _InvalidDatabase("search tree does not end in a record")
        value, _ = self._data.decode(node - self._node_count - _DATA_SEPARATOR)
        return value


def _open_reader(db_path: str | PathLike[str] | None) -> _MmdbReader | None:
    if db_path is None:
        return None
    path = Path(db_path)
    if not path.exists():
        return None
    try:
        return _MmdbReader.open(path)
    except (OSError, ValueError, RecursionError):
        return None


class GeoBlockDetector(Detector):
    """Flags packets whose source address is in a blocked country.

    ``countries`` are ISO 3166-1 alpha-2 codes such as "CN". Without a
    readable country database, lookup is disabled and every packet passes.
    """

    name = "geo_block"
    weight = 1.0

    def __init__(
        self,
        db_path: str | PathLike[str] | None = None,
        countries: Iterable[str] = (),
    ) -> None:
        self._reader = _open_reader(db_path)
        self._blocked_countries = frozenset(countries)

    @property
    def enabled(self) -> bool:
        """Whether a country database was loaded."""
        return self._reader is not None

    def _country_code(self, address: IPv4Address | IPv6Address) -> str | None:
        if self._reader is None:
            return None
        try:
            record = self._reader.lookup(address)
        except (ValueError, RecursionError):
            return None
        if not isinstance(record, dict):
            return None
        country = record.get("country")
        if not isinstance(country, dict):
            return None
        code = country.get("iso_code")
        return code if isinstance(code, str) else None

    def inspect(
        self, packet: DecodedPacket, flow: FlowState, ctx: DetectionContext
    ) -> DetectorResult:
        code = self._country_code(packet.src_ip)
        if code is None or code not in self._blocked_countries:
            return DetectorResult.clean()
        reason = BlockReason(
            code="geo_block",
            description=f"Source IP {packet.src_ip} from blocked country {code}",
        )
        return DetectorResult(
            score=GEO_BLOCK_SCORE,
            reason=reason,
            event=DetectionEvent(
                detector=self.name,
                severity=Severity.HIGH,
                reason=reason,
                metadata={"country": code},
            ),
        )