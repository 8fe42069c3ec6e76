import pytest
from scapy.layers.inet import TCP

from conftest import SOURCE, SOURCE_PORT, TARGET, FakeTarget, make_config
from probe import build_probe, verify_checksum
from scan_config import ScanTechnique
from scanner import print_open_port, run_scan, send_probes


class RecordingSender:
    def __init__(self):
        self.frames = []

    def send(self, probe):
        self.frames.append(bytes(probe))


def test_send_probes_ascending_with_delay():
    config = make_config(ScanTechnique.XMAS, max_port=6)
    probe = build_probe(config)
    sender = RecordingSender()
    sleeps = []

    assert send_probes(config, probe, sender, delay=0.005, sleep=sleeps.append) == 6

    assert sleeps == [0.005] * 6
    segments = [TCP(frame) for frame in sender.frames]
    assert [s.dport for s in segments] == [1, 2, 3, 4, 5, 6]
    for frame, segment in zip(sender.frames, segments):
        assert segment.sport == SOURCE_PORT
        assert int(segment.flags) == 0x29
        assert verify_checksum(frame, SOURCE, TARGET)


def test_send_probes_stops_on_first_failure():
    config = make_config(ScanTechnique.SYN, max_port=10)
    target = FakeTarget(fail_on=4)
    with pytest.raises(OSError):
        send_probes(config, build_probe(config), target, delay=0, sleep=lambda _: None)
    assert [s.dport for s in target.sent] == [1, 2, 3]


def test_print_open_port(capsys):
    print_open_port(22)
    print_open_port(8080)
    assert capsys.readouterr().out == "port 22 is open\nport 8080 is open\n"


def scan(config, target, reply_timeout=5.0):
    reported = []
    result = run_scan(config, target, target, delay=0, reply_timeout=reply_timeout,
                      report=reported.append, poll_interval=0.01)
    return result, reported


def test_syn_scan_end_to_end():
    target = FakeTarget(open_ports={3})
    result, reported = scan(make_config(ScanTechnique.SYN, max_port=5), target)
    assert result == reported == [3]
    assert [s.dport for s in target.sent] == [1, 2, 3, 4, 5]


def test_null_scan_end_to_end():
    target = FakeTarget(open_ports={3})
    result, reported = scan(make_config(ScanTechnique.NULL, max_port=5), target)
    assert result == reported == [3]


@pytest.mark.parametrize("technique", [ScanTechnique.FIN, ScanTechnique.XMAS])
def test_silence_scan_end_to_end(technique):
    target = FakeTarget(open_ports={2, 7, 19})
    result, _ = scan(make_config(technique, max_port=20), target)
    assert result == [2, 7, 19]


@pytest.mark.parametrize("technique", list(ScanTechnique))
def test_single_port_end_to_end(technique):
    target = FakeTarget()
    result, _ = scan(make_config(technique, max_port=1), target, reply_timeout=None)
    assert result == []
    assert len(target.sent) == 1


def test_sender_failure_surfaces_after_receiver_finishes(caplog):
    # the receiver keeps waiting after the sender dies; only the deadline ends it
    target = FakeTarget(open_ports={1}, fail_on=3)
    reported = []
    with pytest.raises(OSError, match="unreachable"):
        run_scan(make_config(ScanTechnique.SYN, max_port=5), target, target, delay=0,
                 reply_timeout=0.2, report=reported.append, poll_interval=0.01)
    assert reported == [1]
    assert "sender failed" in caplog.text
