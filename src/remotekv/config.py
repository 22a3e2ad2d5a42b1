"""Configuration for remotekv documents and locks."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RemoteKVConfig:
    """Tunables shared by document references, locks and backends."""

    blob_suffix: str = ".json"
    cache_ttl_s: float = 5.0
    retry_delays_s: tuple[float, ...] = (0.0, 1.0, 2.0, 5.0, 10.0)
    max_retries: int = 5
    lock_poll_interval_s: float = 15.0
    lock_poll_jitter_s: float = 0.0
    lock_renew_interval_s: float = 120.0
    lock_lease_s: float = 300.0
    lock_provisional_lease_s: float = 60.0
    s3_region: str | None = None
    s3_endpoint_url: str | None = None
    s3_request_timeout_s: float = 10.0
    github_api_url: str = "https://api.github.com"
    github_request_timeout_s: float = 30.0
