"""
Harness configuration

Endpoint credentials and harness knobs are read from the environment at
process start, using the same variable names as the pytest ``config``
fixture. Backends for multi-endpoint runs come from a small built-in table
or from a YAML file.
"""

import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

MIB = 1024 * 1024
MIN_PART_SIZE = 5 * MIB


@dataclass
class BackendConfig:
    """Configuration for an S3 backend"""

    name: str
    endpoint_url: str
    access_key: str
    secret_key: str
    region: str = "us-east-1"
    verify_ssl: bool = False

    @property
    def use_ssl(self) -> bool:
        return self.endpoint_url.startswith("https")


@dataclass
class HarnessSettings:
    """Knobs that shape how scenarios run, independent of the endpoint"""

    bucket_prefix: str = "msst-lock"
    scenario_timeout: float = 60.0
    multipart_size: int = 15 * MIB
    part_size: int = MIN_PART_SIZE
    cleanup_wait: float = 150.0
    strict_error_codes: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Pre-configured backends
BACKENDS: Dict[str, BackendConfig] = {
    "minio": BackendConfig(
        name="MinIO",
        endpoint_url="http://localhost:9000",
        access_key="minioadmin",
        secret_key="minioadmin",
    ),
    "rustfs": BackendConfig(
        name="RustFS",
        endpoint_url="http://localhost:9002",
        access_key="rustfsadmin",
        secret_key="rustfsadmin",
    ),
}


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes")


def backend_from_env() -> BackendConfig:
    return BackendConfig(
        name=os.getenv("S3_BACKEND_NAME", "default"),
        endpoint_url=os.getenv("S3_ENDPOINT", "http://localhost:9000"),
        access_key=os.getenv("S3_ACCESS_KEY", "minioadmin"),
        secret_key=os.getenv("S3_SECRET_KEY", "minioadmin"),
        region=os.getenv("S3_REGION", "us-east-1"),
        verify_ssl=_env_bool("S3_VERIFY_SSL"),
    )


def settings_from_env() -> HarnessSettings:
    defaults = HarnessSettings()
    return HarnessSettings(
        bucket_prefix=os.getenv("S3_BUCKET_PREFIX", defaults.bucket_prefix),
        scenario_timeout=float(
            os.getenv("S3_LOCK_SCENARIO_TIMEOUT", defaults.scenario_timeout)
        ),
        multipart_size=int(os.getenv("S3_LOCK_MULTIPART_SIZE", defaults.multipart_size)),
        part_size=int(os.getenv("S3_LOCK_PART_SIZE", defaults.part_size)),
        cleanup_wait=float(os.getenv("S3_LOCK_CLEANUP_WAIT", defaults.cleanup_wait)),
        strict_error_codes=_env_bool("S3_LOCK_STRICT_CODES"),
    )


def load_backends(path: Optional[str]) -> Dict[str, BackendConfig]:
    """
    Load backend definitions from a YAML file, e.g.:

        backends:
          minio:
            name: MinIO
            endpoint_url: http://localhost:9000
            access_key: minioadmin
            secret_key: minioadmin

    Without a path the built-in table is returned.
    """
    if not path:
        return dict(BACKENDS)
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Backend config not found: {path}")
    with p.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    entries = data.get("backends") if isinstance(data, dict) else None
    if not isinstance(entries, dict):
        raise ValueError("Backend config must contain a 'backends' mapping.")

    backends = {}
    for key, entry in entries.items():
        entry = dict(entry or {})
        entry.setdefault("name", key)
        backends[key] = BackendConfig(**entry)
    return backends


@dataclass
class Config:
    backend: BackendConfig
    settings: HarnessSettings = field(default_factory=HarnessSettings)

    def as_fixture(self) -> Dict[str, Any]:
        """Flat dict in the shape the pytest ``config`` fixture hands out"""
        return {
            "s3_endpoint": self.backend.endpoint_url,
            "s3_access_key": self.backend.access_key,
            "s3_secret_key": self.backend.secret_key,
            "s3_region": self.backend.region,
            "s3_bucket_prefix": self.settings.bucket_prefix,
            "verify_ssl": self.backend.verify_ssl,
            "settings": self.settings,
        }


def load_config() -> Config:
    return Config(backend=backend_from_env(), settings=settings_from_env())


def selected_backends(names: List[str], path: Optional[str] = None) -> List[BackendConfig]:
    available = load_backends(path)
    unknown = [n for n in names if n not in available]
    if unknown:
        raise KeyError(
            f"Unknown backend(s) {', '.join(unknown)}; "
            f"available: {', '.join(sorted(available))}"
        )
    return [available[n] for n in names]
