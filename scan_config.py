#!/usr/bin/env python3
# scan_config.py: scan technique table, immutable scan record and .env loading
import ipaddress
import os
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Mapping, Optional


class ScanError(Exception):
    """Base class for every scanner failure."""


class ConfigError(ScanError):
    pass


# ---------- techniques ----------
class ScanTechnique(Enum):
    SYN = "sS"
    FIN = "sF"
    XMAS = "sX"
    NULL = "sN"

    @property
    def token(self) -> str:
        return self.value

    @property
    def flags(self) -> str:
        # scapy flag letters, see TCP flags field "FSRPAUECN"
        return _TECHNIQUE_FLAGS[self]

    @property
    def open_reply_flags(self) -> Optional[str]:
        # flags of a reply that proves the port open, reported on arrival;
        # None: closed ports answer (RST), open ports stay silent
        return _TECHNIQUE_RULES[self]

    @property
    def reports_on_syn_ack(self) -> bool:
        return self.open_reply_flags is not None

    @classmethod
    def from_token(cls, token: str) -> "ScanTechnique":
        for technique in cls:
            if technique.value == token:
                return technique
        accepted = "|".join(t.value for t in cls)
        raise ConfigError(f"Undefined scan method {token!r}, only accept [{accepted}].")


_TECHNIQUE_FLAGS: Dict[ScanTechnique, str] = {
    ScanTechnique.SYN: "S",
    ScanTechnique.FIN: "F",
    ScanTechnique.XMAS: "FPU",
    ScanTechnique.NULL: "",
}

_TECHNIQUE_RULES: Dict[ScanTechnique, Optional[str]] = {
    ScanTechnique.SYN: "SA",
    ScanTechnique.FIN: None,
    ScanTechnique.XMAS: None,
    ScanTechnique.NULL: None,
}


# ---------- scan record ----------
def _is_port(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= 65535


@dataclass(frozen=True)
class ScanConfig:
    source_address: str
    target_address: str
    source_port: int
    max_port: int
    technique: ScanTechnique

    def __post_init__(self):
        for name in ("source_address", "target_address"):
            try:
                if not isinstance(getattr(self, name), str):
                    raise ValueError(name)
                ipaddress.IPv4Address(getattr(self, name))
            except ValueError:
                raise ConfigError(f"invalid {name.replace('_', ' ')}: {getattr(self, name)!r}") from None
        if not _is_port(self.source_port):
            raise ConfigError(f"invalid source port: {self.source_port}")
        if not _is_port(self.max_port):
            raise ConfigError(f"invalid maximum port num: {self.max_port}")
        if not isinstance(self.technique, ScanTechnique):
            raise ConfigError(f"invalid scan technique: {self.technique!r}")

    @property
    def ports(self) -> range:
        return range(1, self.max_port + 1)


# ---------- key/value settings ----------
SETTING_KEYS = ("MY_IPADDR", "MY_PORT", "MAXIMUM_PORT_NUM")


def load_env_file(path: str) -> Dict[str, str]:
    # KEY = VALUE per line; anything else is skipped
    try:
        with open(path, mode="r", encoding="utf-8") as handle:
            contents = handle.read()
    except OSError as exc:
        raise ConfigError(f"Failed to read env file {path}: {exc}") from exc

    settings: Dict[str, str] = {}
    for line in contents.split("\n"):
        parts = [part.strip() for part in line.split("=")]
        if len(parts) == 2:
            settings[parts[0]] = parts[1]
    return settings


def _parse_port(value: Optional[str], key: str) -> int:
    if value is None or value == "":
        raise ConfigError(f"missing required setting {key}")
    try:
        return int(value)
    except ValueError:
        raise ConfigError(f"invalid port number for {key}: {value!r}") from None


def build_config(target: str,
                 token: str,
                 settings: Mapping[str, str],
                 overrides: Optional[Mapping[str, Optional[str]]] = None,
                 environ: Optional[Mapping[str, str]] = None) -> ScanConfig:
    """
    Merge the key/value file, environment variables of the same names and
    explicit overrides (highest priority) into a ScanConfig.
    """
    environ = os.environ if environ is None else environ
    merged: Dict[str, str] = dict(settings)
    for key in SETTING_KEYS:
        if environ.get(key):
            merged[key] = environ[key]
    for key, value in (overrides or {}).items():
        if value is not None:
            merged[key] = str(value)

    source_address = merged.get("MY_IPADDR")
    if not source_address:
        raise ConfigError("missing required setting MY_IPADDR")

    return ScanConfig(
        source_address=source_address,
        target_address=target,
        source_port=_parse_port(merged.get("MY_PORT"), "MY_PORT"),
        max_port=_parse_port(merged.get("MAXIMUM_PORT_NUM"), "MAXIMUM_PORT_NUM"),
        technique=ScanTechnique.from_token(token),
    )
