from __future__ import annotations

import json
import logging
import os
import stat
from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any

from platformdirs import user_config_path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 60.0
DEFAULT_AUTH_HEADER = "csp-auth-token"


@dataclass(frozen=True)
class Environment:
    host: str
    api_host: str
    storage_bucket: str
    storage_region: str


PRODUCTION = Environment(
    host="gtw.marketplace.cloud.vmware.com",
    api_host="api.marketplace.cloud.vmware.com",
    storage_bucket="cspmarketplaceprd",
    storage_region="us-west-2",
)

STAGING = Environment(
    host="gtwstg.market.csp.vmware.com",
    api_host="apistg.market.csp.vmware.com",
    storage_bucket="cspmarketplacestage",
    storage_region="us-east-2",
)


ENVIRONMENT_PRODUCTION = "production"
ENVIRONMENT_STAGING = "staging"
ENVIRONMENTS = {ENVIRONMENT_PRODUCTION: PRODUCTION, ENVIRONMENT_STAGING: STAGING}


def select_environment(name: str | None = None) -> Environment:
    """MARKETPLACE_ENV wins over the saved ``name``; anything unknown means production."""
    chosen = (os.getenv("MARKETPLACE_ENV") or name or "").strip().lower()
    return ENVIRONMENTS.get(chosen, PRODUCTION)


@dataclass(frozen=True)
class Config:
    environment: str | None = None
    host: str | None = None
    api_host: str | None = None
    storage_bucket: str | None = None
    storage_region: str | None = None
    token: str | None = None
    timeout_s: float = DEFAULT_TIMEOUT_S
    auth_header: str = DEFAULT_AUTH_HEADER

    def with_defaults(self, env: Environment | None = None) -> "Config":
        """Fill unset hosts/bucket/region from the selected environment profile."""
        env = env or select_environment(self.environment)
        return replace(
            self,
            host=self.host or env.host,
            api_host=self.api_host or env.api_host,
            storage_bucket=self.storage_bucket or env.storage_bucket,
            storage_region=self.storage_region or env.storage_region,
        )


def config_path(path_override: str | Path | None = None) -> Path:
    if path_override is not None:
        return Path(path_override).expanduser()
    if env := os.getenv("MKPCLI_CONFIG_PATH"):
        return Path(env).expanduser()
    return user_config_path("mkpcli") / "config.json"


def load_config(path_override: str | Path | None = None) -> Config:
    """
    Read the saved settings. Hosts, bucket and region left unset here are
    filled from the environment profile by ``Config.with_defaults``.
    """
    path = config_path(path_override)
    if not path.exists():
        return Config()

    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        return Config()

    fields = {f.name for f in Config.__dataclass_fields__.values()}  # type: ignore[attr-defined]
    saved: dict[str, Any] = {k: v for k, v in raw.items() if k in fields and v is not None}
    environment = saved.get("environment")
    if environment is not None and str(environment).lower() not in ENVIRONMENTS:
        logger.warning("ignoring unknown environment %r in %s", environment, path)
        del saved["environment"]
    return Config(**saved)  # type: ignore[arg-type]


def save_config(cfg: Config, path_override: str | Path | None = None) -> Path:
    path = config_path(path_override)
    path.parent.mkdir(parents=True, exist_ok=True)

    # Unset fields stay out of the file so they keep following the profile.
    saved = {k: v for k, v in asdict(cfg).items() if v is not None}
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(saved, indent=2, sort_keys=True) + "\n", encoding="utf-8")
    tmp.replace(path)

    # Tokens live in this file.
    try:
        os.chmod(path, stat.S_IRUSR | stat.S_IWUSR)
    except OSError:
        pass

    return path


def redact_token(token: str | None) -> str | None:
    if not token:
        return token
    if len(token) <= 10:
        return token[:2] + "..." + token[-2:]
    return token[:6] + "..." + token[-4:]
