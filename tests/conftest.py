import queue

import pytest
from scapy.layers.inet import TCP

from scan_config import ScanConfig, ScanTechnique

SOURCE = "10.0.0.1"
TARGET = "10.0.0.2"
SOURCE_PORT = 40000

def make_config(technique=ScanTechnique.SYN, max_port=5, source_port=SOURCE_PORT):
    return ScanConfig(SOURCE, TARGET, source_port, max_port, technique)

def reply(origin, flags, dport=SOURCE_PORT):
    return TCP(sport=origin, dport=dport, flags=flags)

class FakeTarget:
    """
    Both channel halves joined through a queue, answering like a
    well-behaved host: SYN -> SYN+ACK if open, RST+ACK if closed;
    FIN/XMAS/NULL -> silence if open, RST+ACK if closed.
    """

    def __init__(self, open_ports=(), silent_ports=(), fail_on=None):
        self.open_ports = set(open_ports)
        self.silent_ports = set(silent_ports)
        self.fail_on = fail_on
        self.sent = []
        self.replies = queue.Queue()

    def send(self, probe):
        segment = TCP(bytes(probe))
        if segment.dport == self.fail_on:
            raise OSError("Network is unreachable")
        self.sent.append(segment)
        # unrelated traffic the receiver must ignore
        self.replies.put(reply(segment.dport, "SA", dport=segment.sport + 1))
        if segment.dport in self.silent_ports:
            return
        is_syn = int(segment.flags) == 0x02
        if segment.dport in self.open_ports:
            if is_syn:
                self.replies.put(reply(segment.dport, "SA", dport=segment.sport))
            return
        self.replies.put(reply(segment.dport, "RA", dport=segment.sport))

    def segments(self, poll_interval):
        while True:
            try:
                yield self.replies.get(timeout=poll_interval)
            except queue.Empty:
                yield None


@pytest.fixture
def reported():
    return []
