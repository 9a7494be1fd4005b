"""
Configuration: loads settings from .semgraph.yaml, environment variables,
and built-in defaults (in that priority order: CLI args > env > YAML > defaults).
"""

import os

import yaml


_DEFAULTS = {
    "graph_path": ".semgraph/graph.pkl",
    "metrics_path": ".semgraph/metrics.db",
    "include": [],
    "exclude": [],
    "debounce_seconds": 0.5,
    "max_workers": 1,
    "file_timeout": 30.0,
    "lock_timeout": 30.0,
    "detect_revision": False,
    "top_n": 10,
}

# Config file search locations
_CONFIG_FILENAMES = [".semgraph.yaml", ".semgraph.yml"]


def _find_config_file(project_root: str, explicit_path: str | None = None) -> str | None:
    """Find the config file. Checks explicit path, project root, then user home."""
    if explicit_path:
        if os.path.isfile(explicit_path):
            return explicit_path
        return None

    search_dirs = [project_root, os.path.expanduser("~")]
    for d in search_dirs:
        for name in _CONFIG_FILENAMES:
            path = os.path.join(d, name)
            if os.path.isfile(path):
                return path
    return None


def _load_yaml(path: str) -> dict:
    """Load YAML file, returns empty dict on failure."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data if isinstance(data, dict) else {}
    except (OSError, yaml.YAMLError):
        return {}


def _as_list(value) -> list[str]:
    if isinstance(value, str):
        return [p.strip() for p in value.split(",") if p.strip()]
    if isinstance(value, (list, tuple)):
        return [str(p) for p in value]
    return []


class Config:
    """Engine configuration.

    Settings are resolved in priority order:
    1. CLI arguments (handled by caller)
    2. Environment variables (``SEMGRAPH_*``)
    3. .semgraph.yaml config file
    4. Built-in defaults

    Relative store paths are resolved against *project_root*.
    """

    def __init__(self, yaml_data: dict | None = None, project_root: str = "."):
        yd = yaml_data or {}
        self.PROJECT_ROOT = os.path.abspath(project_root)

        # Helper: env var > yaml > default
        def _get(key: str, cast=str):
            env_val = os.getenv("SEMGRAPH_" + key.upper())
            if env_val is not None:
                return cast(env_val)
            yaml_val = yd.get(key)
            if yaml_val is not None:
                return cast(yaml_val)
            return _DEFAULTS[key]

        def _get_bool(key: str) -> bool:
            env_val = os.getenv("SEMGRAPH_" + key.upper())
            if env_val is not None:
                return env_val.lower() in ("1", "true", "yes")
            yaml_val = yd.get(key)
            if yaml_val is not None:
                return bool(yaml_val)
            return _DEFAULTS[key]

        def _resolve(path: str) -> str:
            return path if os.path.isabs(path) else os.path.join(self.PROJECT_ROOT, path)

        self.GRAPH_PATH = _resolve(_get("graph_path"))
        self.METRICS_PATH = _resolve(_get("metrics_path"))

        self.INCLUDE: list[str] = _get("include", cast=_as_list)
        self.EXCLUDE: list[str] = _get("exclude", cast=_as_list)

        self.DEBOUNCE_SECONDS = _get("debounce_seconds", cast=float)
        self.MAX_WORKERS = max(1, _get("max_workers", cast=int))
        self.FILE_TIMEOUT = _get("file_timeout", cast=float)
        self.LOCK_TIMEOUT = _get("lock_timeout", cast=float)
        self.DETECT_REVISION = _get_bool("detect_revision")
        self.TOP_N = _get("top_n", cast=int)

    def to_dict(self) -> dict:
        return {
            "project_root": self.PROJECT_ROOT,
            "graph_path": self.GRAPH_PATH,
            "metrics_path": self.METRICS_PATH,
            "include": list(self.INCLUDE),
            "exclude": list(self.EXCLUDE),
            "debounce_seconds": self.DEBOUNCE_SECONDS,
            "max_workers": self.MAX_WORKERS,
            "file_timeout": self.FILE_TIMEOUT,
            "lock_timeout": self.LOCK_TIMEOUT,
            "detect_revision": self.DETECT_REVISION,
            "top_n": self.TOP_N,
        }

    @classmethod
    def load(cls, project_root: str = ".", config_path: str | None = None) -> "Config":
        """Load config from YAML file (if found) + env vars + defaults."""
        path = _find_config_file(os.path.abspath(project_root), config_path)
        yaml_data = _load_yaml(path) if path else {}
        return cls(yaml_data, project_root=project_root)
