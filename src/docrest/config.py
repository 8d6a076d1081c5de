"""Configuration for the docrest service."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields


@dataclass
class ServiceConfig:
    """Configuration for a docrest Service."""

    default_db_prefix: str = "rest_"
    default_table: str = "cn"
    id_generator: str = "uuid"  # 'uuid' or 'hex'
    max_id_length: int = 64
    index_poll_interval_sec: float = 1.0
    index_ensured_ttl_sec: float = 600.0
    search_max_results: int = 2000
    side_effect_workers: int = 4
    es_url: str = "http://127.0.0.1:9200"
    es_user: str = ""
    es_password: str = ""
    es_index: str = "restful"
    es_analyzer: str = "standard"
    es_search_analyzer: str = "standard"
    es_timeout_sec: float = 4.0

    @classmethod
    def from_env(cls, prefix: str = "DOCREST_") -> ServiceConfig:
        """Build a config from ``DOCREST_*`` environment variables."""
        values: dict[str, object] = {}
        for f in fields(cls):
            raw = os.environ.get(prefix + f.name.upper())
            if raw is None:
                continue
            default = f.default
            if isinstance(default, bool):
                values[f.name] = raw.strip().lower() in ("1", "true", "yes", "on")
            elif isinstance(default, int):
                values[f.name] = int(raw)
            elif isinstance(default, float):
                values[f.name] = float(raw)
            else:
                values[f.name] = raw
        return cls(**values)  # type: ignore[arg-type]
