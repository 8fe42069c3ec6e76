#!/usr/bin/env python3
# scanner.py: paced probe sender, reply classifier and the two-task scan driver
import logging
import threading
import time
from enum import Enum
from typing import Callable, Iterable, List, Optional, Set

from probe import TcpProbe, build_probe
from scan_config import ScanConfig

logger = logging.getLogger(__name__)

PROBE_DELAY = 0.005          # fixed pause before every send
PROGRESS_EVERY = 1000

# ---------- helpers ----------
def print_open_port(port: int) -> None:
    print(f"port {port} is open", flush=True)


def log_rate(prefix, done, total, t0):
    elapsed = max(1e-6, time.monotonic() - t0)
    rate = done / elapsed
    eta = (total - done) / rate if rate > 0 else float("inf")
    logger.debug("%s %d/%d  rate=%.1f/s  eta=%.1fs", prefix, done, total, rate, eta)


# ---------- sender ----------
def send_probes(config: ScanConfig,
                probe: TcpProbe,
                sender,
                delay: float = PROBE_DELAY,
                sleep: Callable[[float], None] = time.sleep) -> int:
    """
    Probe ports 1..max_port in ascending order, one segment each. Nothing is
    awaited; the first failed send propagates.
    """
    total = config.max_port
    t0 = time.monotonic()
    sent = 0
    for port in config.ports:
        probe.retarget(port, config)
        sleep(delay)
        sender.send(probe)
        sent += 1
        if sent % PROGRESS_EVERY == 0:
            log_rate(f"[{config.technique.name}] sent", sent, total, t0)
    logger.debug("[%s] all %d probes sent in %.1fs", config.technique.name, sent, time.monotonic() - t0)
    return sent


# ---------- receiver ----------
class ReceiverState(Enum):
    LISTENING = "listening"
    DRAINING = "draining"
    DONE = "done"


class Receiver:
    """
    Classifies replies addressed to the scanner's source port.

    SYN: a reply flagged exactly SYN+ACK is reported right away, every time
    it arrives. FIN/XMAS/NULL: every replying port is recorded, and the
    ports that never replied are reported once the scan completes.

    The scan completes when a reply from max_port is seen. With a
    reply_timeout it also completes after that many seconds without an
    accepted reply; without one the receiver may wait forever.
    """

    def __init__(self,
                 config: ScanConfig,
                 report: Callable[[int], None] = print_open_port,
                 reply_timeout: Optional[float] = None):
        self.config = config
        self.report = report
        self.reply_timeout = reply_timeout
        self.state = ReceiverState.LISTENING
        self.replied: Set[int] = set()
        self.open_ports: List[int] = []

    def _report(self, port: int) -> None:
        self.open_ports.append(port)
        self.report(port)

    def _drain(self) -> None:
        self.state = ReceiverState.DRAINING
        if not self.config.technique.reports_on_syn_ack:
            for port in self.config.ports:
                if port not in self.replied:
                    self._report(port)
        self.state = ReceiverState.DONE

    def observe(self, segment) -> bool:
        if self.state is ReceiverState.DONE:
            return True
        if segment.dport != self.config.source_port:
            return False

        origin = int(segment.sport)
        expected = self.config.technique.open_reply_flags
        if expected is not None:
            # FlagValue equality is exact: extra bits such as ECE do not match
            if segment.flags == expected:
                self._report(origin)
        else:
            self.replied.add(origin)

        if origin != self.config.max_port:
            return False
        self._drain()
        return True

    def run(self, segments: Iterable, clock: Callable[[], float] = time.monotonic) -> List[int]:
        last_reply = clock()
        for segment in segments:
            now = clock()
            if segment is not None:
                if segment.dport == self.config.source_port:
                    last_reply = now
                if self.observe(segment):
                    break
            # deadline runs from the last accepted reply, whatever else arrives
            if self.reply_timeout is not None and now - last_reply >= self.reply_timeout:
                logger.warning("no reply for %.1fs, finishing without the reply from port %d",
                               self.reply_timeout, self.config.max_port)
                self._drain()
                break
        return self.open_ports


# ---------- driver ----------
class _Task(threading.Thread):
    # result/error are read only after join()
    def __init__(self, name, target, *args):
        super().__init__(name=name, daemon=True)
        self._fn = target
        self._args = args
        self.result = None
        self.error: Optional[BaseException] = None

    def run(self):
        try:
            self.result = self._fn(*self._args)
        except Exception as exc:
            self.error = exc
            logger.error("%s failed: %s", self.name, exc)


def run_scan(config: ScanConfig,
             sender,
             receiver,
             delay: float = PROBE_DELAY,
             reply_timeout: Optional[float] = None,
             report: Callable[[int], None] = print_open_port,
             poll_interval: float = 0.5) -> List[int]:
    """
    Run the sender and the receiver side by side and join both. They share
    nothing but the immutable config; a sender failure is logged but does
    not stop the receiver, which keeps waiting for its final reply.
    """
    probe = build_probe(config)
    classifier = Receiver(config, report=report, reply_timeout=reply_timeout)

    tasks = [
        _Task("sender", send_probes, config, probe, sender, delay),
        _Task("receiver", classifier.run, receiver.segments(poll_interval)),
    ]
    for task in tasks:
        task.start()
    for task in tasks:
        task.join()

    for task in tasks:
        if task.error is not None:
            raise task.error
    return classifier.open_ports
