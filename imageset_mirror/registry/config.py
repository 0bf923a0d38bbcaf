"""Configuration of the local cache registry.

The configuration is rendered from a fixed YAML template (the same document a
stock distribution registry accepts) and parsed back into RegistryConfig.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import yaml

from imageset_mirror.exceptions import SetupError

CONFIG_TEMPLATE = """
version: 0.1
log:
  accesslog:
    disabled: $$PLACEHOLDER_ACCESS_LOG_OFF$$
  level: $$PLACEHOLDER_LOG_LEVEL$$
  formatter: text
  fields:
    service: registry
storage:
  cache:
    blobdescriptor: inmemory
  filesystem:
    rootdirectory: $$PLACEHOLDER_ROOT$$
http:
  addr: :$$PLACEHOLDER_PORT$$
  headers:
    X-Content-Type-Options: [nosniff]
health:
  storagedriver:
    enabled: true
    interval: 10s
    threshold: 3
"""


@dataclass(frozen=True)
class RegistryConfig:
    root_directory: Path
    host: str
    port: int
    log_level: str
    access_log_disabled: bool
    headers: dict
    health_enabled: bool = True
    health_interval_seconds: float = 10.0
    health_threshold: int = 3


def render_config(root_directory: str | Path, port: int, log_level: str) -> str:
    """Substitute resolved values into the registry configuration template.

    The access log is only enabled for the debug log level.
    """
    document = CONFIG_TEMPLATE
    document = document.replace("$$PLACEHOLDER_ROOT$$", str(root_directory), 1)
    document = document.replace("$$PLACEHOLDER_PORT$$", str(int(port)), 1)
    document = document.replace("$$PLACEHOLDER_LOG_LEVEL$$", log_level, 1)
    access_log_off = "false" if log_level == "debug" else "true"
    document = document.replace("$$PLACEHOLDER_ACCESS_LOG_OFF$$", access_log_off, 1)
    return document


def _parse_duration(value) -> float:
    """Parse durations such as '10s', '500ms' or '1m' into seconds."""
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    for suffix, factor in (("ms", 0.001), ("s", 1.0), ("m", 60.0), ("h", 3600.0)):
        if text.endswith(suffix):
            return float(text[: -len(suffix)]) * factor
    return float(text)


def parse_config(document: str) -> RegistryConfig:
    """Parse a rendered registry configuration.

    Raises:
        SetupError: If the document is not valid YAML or misses required keys
    """
    try:
        payload = yaml.safe_load(document)
        storage_root = payload["storage"]["filesystem"]["rootdirectory"]
        addr = str(payload["http"]["addr"])
        log_section = payload.get("log") or {}
        health = (payload.get("health") or {}).get("storagedriver") or {}
        host, _, port = addr.rpartition(":")
        return RegistryConfig(
            root_directory=Path(str(storage_root)),
            host=host or "0.0.0.0",
            port=int(port),
            log_level=str(log_section.get("level", "info")),
            access_log_disabled=bool(
                (log_section.get("accesslog") or {}).get("disabled", True)
            ),
            headers=dict((payload["http"].get("headers") or {})),
            health_enabled=bool(health.get("enabled", False)),
            health_interval_seconds=_parse_duration(health.get("interval", "10s")),
            health_threshold=int(health.get("threshold", 3)),
        )
    except (yaml.YAMLError, KeyError, TypeError, ValueError) as exc:
        raise SetupError(
            f"error parsing local storage configuration : {exc}\n {document}"
        ) from exc
