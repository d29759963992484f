"""Environment configuration for the tagger sidecar."""
import os
from dataclasses import dataclass
from pathlib import Path


@dataclass
class StashConfig:
    """Local Stash instance configuration."""
    url: str
    api_key: str

    @classmethod
    def from_env(cls) -> "StashConfig":
        return cls(
            url=os.environ.get("STASH_URL", "http://localhost:9999"),
            api_key=os.environ.get("STASH_API_KEY", ""),
        )


@dataclass
class DataConfig:
    """Where the sidecar keeps its own state."""
    data_dir: Path
    settings_db_path: Path = None

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.settings_db_path = self.settings_db_path or self.data_dir / "stash_tagger.db"

    @classmethod
    def from_env(cls) -> "DataConfig":
        return cls(data_dir=Path(os.environ.get("DATA_DIR", "./data")))
