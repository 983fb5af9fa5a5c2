"""
Configuration management for Heelix
Handles loading and saving application and vectorization settings
"""

import json
import os
from pathlib import Path
from typing import Dict, Any, Optional


# Environment variables consulted when no key is stored in settings
API_KEY_ENV_VARS = ("OPENAI_API_KEY", "HEELIX_OPENAI_API_KEY")


def default_home() -> Path:
    """Resolve the Heelix home directory (HEELIX_HOME or ~/.heelix)"""
    override = os.environ.get("HEELIX_HOME")
    if override:
        return Path(override).expanduser()
    return Path.home() / ".heelix"


class Config:
    """Configuration manager for the Heelix recall pipeline"""

    def __init__(self, home_dir: Optional[Path] = None):
        """
        Initialize configuration manager

        Args:
            home_dir: Base directory for config, data and logs (defaults to ~/.heelix)
        """
        if home_dir is None:
            home_dir = default_home()

        self.home_dir = Path(home_dir)
        self.config_dir = self.home_dir / "config"
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self.settings_file = self.config_dir / "settings.json"
        self.vectorization_file = self.config_dir / "vectorization.json"

        # Load configurations
        self.settings = self._load_json(self.settings_file, self._default_settings())
        self.vectorization = self._load_json(
            self.vectorization_file, self._default_vectorization()
        )

    def _load_json(self, file_path: Path, default: Dict[str, Any]) -> Dict[str, Any]:
        """Load JSON file merged over defaults, creating the file if missing"""
        if file_path.exists():
            with open(file_path, 'r') as f:
                stored = json.load(f)
            merged = dict(default)
            merged.update(stored)
            return merged
        else:
            # Create file with defaults
            self._save_json(file_path, default)
            return dict(default)

    def _save_json(self, file_path: Path, data: Dict[str, Any]) -> None:
        """Save data to JSON file"""
        with open(file_path, 'w') as f:
            json.dump(data, f, indent=2)

    def _default_settings(self) -> Dict[str, Any]:
        """Default application settings"""
        return {
            "database_path": "data/heelix.db",
            "index_directory": "data/index",
            "log_directory": "logs",
            "log_level": "INFO",
            "capture_interval_seconds": 20,
        }

    def _default_vectorization(self) -> Dict[str, Any]:
        """Default vectorization and retrieval settings"""
        return {
            "vectorization_enabled": True,
            "openai_api_key": "",
            "embedding_model": "text-embedding-3-small",
            "embedding_dimensions": 1536,
            "embedding_timeout_seconds": 30.0,
            "embedding_max_attempts": 3,
            "vectorize_min_chars": 200,
            "retrieval_default_k": 5,
            "reindex_on_edit": False,
            "reconcile_interval_seconds": 0,
            "collection_name": "heelix_records",
        }

    def get(self, key: str, section: str = "settings", default: Any = None) -> Any:
        """
        Get configuration value

        Args:
            key: Configuration key
            section: Configuration section ('settings', 'vectorization')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        section_map = {
            "settings": self.settings,
            "vectorization": self.vectorization,
        }

        return section_map.get(section, {}).get(key, default)

    def set(self, key: str, value: Any, section: str = "settings") -> None:
        """
        Set configuration value and save to disk

        Args:
            key: Configuration key
            value: Value to set
            section: Configuration section ('settings', 'vectorization')
        """
        section_map = {
            "settings": (self.settings, self.settings_file),
            "vectorization": (self.vectorization, self.vectorization_file),
        }

        if section not in section_map:
            raise ValueError(f"Unknown config section: {section}")

        config_dict, file_path = section_map[section]
        config_dict[key] = value
        self._save_json(file_path, config_dict)

    def _resolve(self, value: str) -> Path:
        path = Path(value).expanduser()
        if not path.is_absolute():
            path = self.home_dir / path
        return path

    def get_database_path(self) -> Path:
        """Get full path to database file"""
        return self._resolve(self.settings["database_path"])

    def get_index_directory(self) -> Path:
        """Get full path to the persisted vector index"""
        return self._resolve(self.settings["index_directory"])

    def get_log_directory(self) -> Path:
        """Get full path to the log directory"""
        return self._resolve(self.settings["log_directory"])

    # Vectorization accessors are read on every call so edits made through
    # set() or the environment apply to the next write.

    def is_vectorization_enabled(self) -> bool:
        return bool(self.vectorization.get("vectorization_enabled", True))

    def get_openai_api_key(self) -> str:
        """
        Get the embedding credential

        Returns the stored key, falling back to OPENAI_API_KEY and then
        HEELIX_OPENAI_API_KEY. Returns an empty string when none is usable.
        """
        key = (self.vectorization.get("openai_api_key") or "").strip()
        if key:
            return key
        for env_var in API_KEY_ENV_VARS:
            key = os.environ.get(env_var, "").strip()
            if key:
                return key
        return ""

    @property
    def vectorize_min_chars(self) -> int:
        return int(self.vectorization["vectorize_min_chars"])

    @property
    def embedding_dimensions(self) -> int:
        return int(self.vectorization["embedding_dimensions"])
