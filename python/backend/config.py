"""Network and session settings.

Every value has a working default; ``SyncConfig.from_env`` lets the
environment override them (``LINESLIDE_PORT=48000`` and so on).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace

ENV_PREFIX = "LINESLIDE_"


@dataclass(frozen=True)
class SyncConfig:
    # TCP port for game links; 0 picks a free one
    port: int = 47800
    bind_host: str = "0.0.0.0"
    # address other players should use to reach us; None = auto-detect
    advertise_host: str | None = None

    discovery: bool = True
    multicast_group: str = "239.255.42.99"
    multicast_port: int = 47801
    multicast_ttl: int = 2
    heartbeat_interval: float = 5.0
    peer_ttl: float = 15.0

    connect_timeout: float = 5.0
    request_timeout: float = 30.0
    shuffle_moves: int = 200

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None, **overrides) -> SyncConfig:
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}
        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            values[f.name] = _coerce(f.type, raw, f.name)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return replace(cls(), **values)


def _coerce(annotation: object, raw: str, name: str) -> object:
    kind = str(annotation)
    try:
        if kind.startswith("bool"):
            return raw.strip().lower() in ("1", "true", "yes", "on")
        if kind.startswith("int"):
            return int(raw)
        if kind.startswith("float"):
            return float(raw)
    except ValueError as exc:
        raise ValueError(f"{ENV_PREFIX}{name.upper()}={raw!r}: {exc}") from exc
    return raw
