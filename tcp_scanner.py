#!/usr/bin/env python3
# tcp_scanner.py: raw TCP port scanner (SYN / FIN / XMAS / NULL), root required
#
#   sudo tcp-scanner 192.168.56.10 sS
#   sudo tcp-scanner 192.168.56.10 sF --env-file lab.env --max-port 1024 --reply-timeout 5
#
# .env keys: MY_IPADDR, MY_PORT, MAXIMUM_PORT_NUM (environment variables of the
# same names take precedence over the file, command-line flags over both).
import argparse
import logging
import sys
import time

from scapy.error import Scapy_Exception

from channel import ChannelError, open_channel
from scan_config import ConfigError, ScanError, ScanTechnique, build_config, load_env_file
from scanner import PROBE_DELAY, run_scan

logger = logging.getLogger("tcp_scanner")

# Force line-buffered stdout so results show up even when piped
try:
    sys.stdout.reconfigure(line_buffering=True)
except Exception:
    pass


def build_cli_parser() -> argparse.ArgumentParser:
    tokens = "|".join(t.token for t in ScanTechnique)
    parser = argparse.ArgumentParser(description="Raw TCP port scanner (SYN/FIN/XMAS/NULL)")
    parser.add_argument("target", help="Target IPv4 address")
    parser.add_argument("scantype", help=f"Scan method [{tokens}]")
    parser.add_argument("--env-file", default=".env", help="Key/value settings file (default .env)")
    parser.add_argument("--source-address", default=None, help="Override MY_IPADDR")
    parser.add_argument("--source-port", type=int, default=None, help="Override MY_PORT")
    parser.add_argument("--max-port", type=int, default=None, help="Override MAXIMUM_PORT_NUM")
    parser.add_argument("--delay", type=float, default=PROBE_DELAY,
                        help="Seconds to pause before each probe (default 0.005)")
    parser.add_argument("--reply-timeout", type=float, default=None,
                        help="Give up after this many seconds without a reply (default: wait for the last port)")
    parser.add_argument("--iface", default=None, help="Interface for the raw channel")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("scapy.runtime").setLevel(logging.ERROR)


def main(argv=None) -> int:
    args = build_cli_parser().parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = load_env_file(args.env_file)
        config = build_config(args.target, args.scantype, settings, overrides={
            "MY_IPADDR": args.source_address,
            "MY_PORT": args.source_port,
            "MAXIMUM_PORT_NUM": args.max_port,
        })
    except ConfigError as exc:
        logger.error("%s", exc)
        return 1

    try:
        sender, receiver = open_channel(config, iface=args.iface)
    except ChannelError as exc:
        logger.error("%s (raw sockets need root)", exc)
        return 1

    logger.info("Scanning %s ports 1-%d | method=%s | src=%s:%d",
                config.target_address, config.max_port, config.technique.name,
                config.source_address, config.source_port)
    t0 = time.monotonic()
    try:
        with sender, receiver:
            open_ports = run_scan(config, sender, receiver,
                                  delay=args.delay, reply_timeout=args.reply_timeout)
    except KeyboardInterrupt:
        logger.warning("interrupted")
        return 130
    except (ScanError, OSError, Scapy_Exception) as exc:
        logger.error("scan aborted: %s", exc)
        return 1

    logger.info("done: ports=%d open=%d time=%.1fs",
                config.max_port, len(open_ports), time.monotonic() - t0)
    return 0


if __name__ == "__main__":
    sys.exit(main())
