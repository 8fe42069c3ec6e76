#!/usr/bin/env python3
# channel.py: raw IPv4/TCP transport, split into an independent send half and receive half
import logging
import socket
import time
from typing import Iterator, Optional, Tuple

from scapy.config import conf
from scapy.error import Scapy_Exception
from scapy.layers.inet import IP, TCP
from scapy.packet import Raw

from probe import TcpProbe
from scan_config import ScanConfig, ScanError

conf.verb = 0
logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 0.5


class ChannelError(ScanError):
    pass


def _open_l3socket(iface: Optional[str]):
    try:
        if iface:
            return conf.L3socket(iface=iface)
        return conf.L3socket()
    except (OSError, Scapy_Exception) as exc:
        raise ChannelError(f"Failed to open channel: {exc}") from exc


class ProbeSender:
    """Send half. The IPv4 header (proto TCP, configured source) is added here."""

    def __init__(self, config: ScanConfig, iface: Optional[str] = None):
        self.config = config
        self._socket = _open_l3socket(iface)

    def send(self, probe: TcpProbe) -> None:
        ip = IP(src=self.config.source_address,
                dst=self.config.target_address,
                proto=socket.IPPROTO_TCP)
        self._socket.send(ip / Raw(load=bytes(probe)))

    def close(self) -> None:
        self._socket.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


class SegmentReceiver:
    """Receive half. Sees every TCP segment reaching the local stack; no port filtering."""

    def __init__(self, iface: Optional[str] = None):
        self._socket = _open_l3socket(iface)

    def segments(self, poll_interval: float = DEFAULT_POLL_INTERVAL) -> Iterator[Optional[TCP]]:
        # yields None on every idle poll and after every failed read
        while True:
            try:
                ready = self._socket.select([self._socket], poll_interval)
                if not ready:
                    yield None
                    continue
                packet = self._socket.recv()
            except (OSError, Scapy_Exception) as exc:
                logger.debug("receive failed, skipping: %s", exc)
                time.sleep(poll_interval)
                yield None
                continue
            # outgoing frames come back as None
            if packet is None or not packet.haslayer(TCP):
                continue
            yield packet[TCP]

    def close(self) -> None:
        self._socket.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


def open_channel(config: ScanConfig, iface: Optional[str] = None) -> Tuple[ProbeSender, SegmentReceiver]:
    sender = ProbeSender(config, iface)
    try:
        receiver = SegmentReceiver(iface)
    except ChannelError:
        sender.close()
        raise
    logger.debug("raw channel open (iface=%s)", iface or "(auto)")
    return sender, receiver
