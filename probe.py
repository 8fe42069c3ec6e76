#!/usr/bin/env python3
# probe.py: fixed 20-byte TCP probe, template builder and per-port mutator
import socket
import struct
from typing import Union

from scapy.layers.inet import IP, TCP, in4_chksum

from scan_config import ScanConfig, ScanError

TCP_SIZE = 20          # no options
DATA_OFFSET = 5        # in 32-bit words
PLACEHOLDER_PORT = 0   # overwritten before the first send

_DPORT_OFFSET = 2
_CHECKSUM_OFFSET = 16
_FLAGS_OFFSET = 12     # 4-bit offset, 3 reserved bits, 9 flag bits


class ProbeError(ScanError):
    pass


# ---------- checksum helpers ----------
def _pseudo_ip(source: str, target: str) -> IP:
    # only src/dst/proto of this layer feed the pseudo-header
    return IP(src=source, dst=target, proto=socket.IPPROTO_TCP)


def tcp_checksum(segment: Union[bytes, bytearray], source: str, target: str) -> int:
    # checksum field must already be zeroed
    return in4_chksum(socket.IPPROTO_TCP, _pseudo_ip(source, target), bytes(segment))


def verify_checksum(segment: Union[bytes, bytearray], source: str, target: str) -> bool:
    # summing a segment with its checksum in place folds to 0xffff, i.e. 0 once complemented
    return tcp_checksum(segment, source, target) == 0


# ---------- probe ----------
class TcpProbe:
    """
    A TCP header without options, kept in one mutable buffer. Only the
    destination port and checksum fields are ever rewritten after building.
    """

    def __init__(self, buffer: Union[bytes, bytearray]):
        if len(buffer) != TCP_SIZE:
            raise ProbeError(f"invalid packet: expected {TCP_SIZE} bytes, got {len(buffer)}")
        self._buffer = bytearray(buffer)

    def __bytes__(self) -> bytes:
        return bytes(self._buffer)

    def __len__(self) -> int:
        return len(self._buffer)

    def __repr__(self) -> str:
        return (f"TcpProbe(sport={self.source_port}, dport={self.destination_port}, "
                f"flags={self.flags:#05x}, chksum={self.checksum:#06x})")

    @property
    def source_port(self) -> int:
        return struct.unpack_from("!H", self._buffer, 0)[0]

    @property
    def destination_port(self) -> int:
        return struct.unpack_from("!H", self._buffer, _DPORT_OFFSET)[0]

    @property
    def data_offset(self) -> int:
        return self._buffer[_FLAGS_OFFSET] >> 4

    @property
    def flags(self) -> int:
        return struct.unpack_from("!H", self._buffer, _FLAGS_OFFSET)[0] & 0x1FF

    @property
    def checksum(self) -> int:
        return struct.unpack_from("!H", self._buffer, _CHECKSUM_OFFSET)[0]

    def refresh_checksum(self, config: ScanConfig) -> None:
        struct.pack_into("!H", self._buffer, _CHECKSUM_OFFSET, 0)
        value = tcp_checksum(self._buffer, config.source_address, config.target_address)
        struct.pack_into("!H", self._buffer, _CHECKSUM_OFFSET, value)

    def retarget(self, port: int, config: ScanConfig) -> None:
        # destination port and checksum are the only bytes touched
        if not 0 <= port <= 0xFFFF:
            raise ProbeError(f"invalid destination port: {port}")
        struct.pack_into("!H", self._buffer, _DPORT_OFFSET, port)
        self.refresh_checksum(config)


def build_probe(config: ScanConfig) -> TcpProbe:
    header = TCP(
        sport=config.source_port,
        dport=PLACEHOLDER_PORT,
        dataofs=DATA_OFFSET,
        flags=config.technique.flags,
        chksum=0,
    )
    probe = TcpProbe(bytes(header))
    probe.refresh_checksum(config)
    return probe
