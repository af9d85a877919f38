# Tracker: configuration
# Override via config.yaml, TRACKER_* environment variables or CLI args.

import os
import yaml
from pathlib import Path
from dataclasses import dataclass, fields
from typing import Optional

CONFIG_PATH = Path(__file__).parent.parent / "config.yaml"

ENV_OVERRIDES = {
    "TRACKER_DB": "db_path",
    "TRACKER_STORAGE": "storage",
    "TRACKER_DEMO_FILE": "demo_data_path",
    "TRACKER_UPLOADS_DIR": "uploads_dir",
    "TRACKER_API_SECRET": "api_secret",
}


@dataclass
class Config:
    """Runtime configuration for the tracker server."""

    # Storage
    storage: str = "sqlite"                  # "sqlite" or "memory" (demo mode)
    db_path: str = "~/.local/share/tracker/tracker.db"
    demo_data_path: str = ""                 # JSON mirror for memory storage; empty = RAM only
    strict_positions: bool = False           # reject reorders that leave gaps or duplicates

    # Attachments
    uploads_dir: str = "~/.local/share/tracker/uploads"
    max_upload_mb: int = 25

    # Auth
    api_secret: str = ""                     # X-API-Key value; empty disables key auth
    api_user_id: str = "api-service"
    api_user_email: str = "api@tracker.local"

    # Server
    host: str = "127.0.0.1"
    port: int = 3000
    log_level: str = "INFO"

    def resolve_paths(self):
        """Expand ~ in every path setting."""
        self.db_path = str(Path(self.db_path).expanduser())
        self.uploads_dir = str(Path(self.uploads_dir).expanduser())
        if self.demo_data_path:
            self.demo_data_path = str(Path(self.demo_data_path).expanduser())

    def apply_env(self, environ: Optional[dict] = None):
        """Let TRACKER_* environment variables win over the YAML file."""
        environ = os.environ if environ is None else environ
        for var, attr in ENV_OVERRIDES.items():
            if environ.get(var):
                setattr(self, attr, environ[var])
        if environ.get("TRACKER_STRICT_POSITIONS"):
            self.strict_positions = environ["TRACKER_STRICT_POSITIONS"].lower() in ("1", "true", "yes")

    @property
    def demo_mode(self) -> bool:
        return self.storage == "memory"

    @classmethod
    def load(cls, path: Optional[str] = None, environ: Optional[dict] = None) -> "Config":
        """Load config from YAML file, falling back to defaults."""
        cfg_path = Path(path) if path else CONFIG_PATH
        if cfg_path.exists():
            try:
                with open(cfg_path, "r") as f:
                    data = yaml.safe_load(f) or {}
                known = {f.name for f in fields(cls)}
                cfg = cls(**{k: v for k, v in data.items() if k in known})
            except (OSError, yaml.YAMLError, TypeError):
                cfg = cls()
        else:
            cfg = cls()
        cfg.apply_env(environ)
        cfg.resolve_paths()
        return cfg
