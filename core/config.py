"""
Configuration Management Module

This module provides a centralized way to load and access configuration settings
from the config.yaml file. It uses the Singleton pattern to ensure only one
configuration instance exists throughout the application.

Values read from the YAML file are merged over DEFAULT_CONFIG, so a partial
file (or one that omits a whole section) still yields a complete configuration.

Usage:
    from core.config import get_config
    config = get_config()
    threshold = config["matching"]["auth_threshold"]
"""

import copy
import os
import yaml
from pathlib import Path
from typing import Any, Dict, Optional


# Environment variable that may point to an alternate config file
CONFIG_ENV_VAR = "FACE_AUTH_CONFIG"

DEFAULT_CONFIG: Dict[str, Any] = {
    "quality": {
        "min_quality_for_enrollment": 0.60,
        "max_eye_height_diff": 0.05,
        "tilt_penalty": 0.8,
        "max_nose_offset": 0.05,
        "turn_penalty": 0.7,
        "min_face_width": 0.1,
        "max_face_width": 0.5,
        "size_penalty": 0.6,
        "max_mean_depth": 0.1,
        "depth_penalty": 0.8,
    },
    "matching": {
        "auth_threshold": 0.80,
    },
    "enrollment": {
        "expected_embedding_length": 234,
    },
    "abuse_guard": {
        "rate_limit": {
            "max_requests": 5,
            "window_ms": 60000,
            "sweep_interval_ms": 300000,
        },
        "suspicious": {
            "min_user_agent_length": 10,
            "patterns": ["bot", "crawler", "spider", "scraper", "curl", "wget"],
        },
    },
    "storage": {
        "db_path": "storage/face_auth.sqlite",
    },
    "api": {
        "base_url": "http://localhost:8000",
        "cors_origins": ["*"],
    },
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    },
}


# Store the singleton instance (module-level variable)
_config_instance: Optional[Dict[str, Any]] = None


def get_project_root() -> Path:
    """
    Find the project root directory.

    The project root is identified by the presence of config.yaml file.
    This function walks up the directory tree from this file's location
    until it finds config.yaml.

    Returns:
        Path: The absolute path to the project root directory.

    Raises:
        FileNotFoundError: If config.yaml cannot be found in any parent directory.
    """
    current_dir = Path(__file__).resolve().parent

    while current_dir != current_dir.parent:
        config_path = current_dir / "config.yaml"
        if config_path.exists():
            return current_dir
        current_dir = current_dir.parent

    raise FileNotFoundError(
        "Could not find config.yaml in any parent directory. "
        "Make sure you're running from within the project directory."
    )


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of base with override merged in, recursing into dicts."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file and merge it over the defaults.

    Lookup order when config_path is not given:
        1. The file named by the FACE_AUTH_CONFIG environment variable.
        2. config.yaml in the project root.
        3. DEFAULT_CONFIG alone, if no config.yaml can be found.

    Args:
        config_path: Optional explicit path to the config file.

    Returns:
        Dict containing all configuration values.

    Raises:
        FileNotFoundError: If an explicitly requested config file doesn't exist.
        yaml.YAMLError: If the config file contains invalid YAML.
    """
    if config_path is None:
        config_path = os.environ.get(CONFIG_ENV_VAR)

    if config_path is None:
        try:
            path = get_project_root() / "config.yaml"
        except FileNotFoundError:
            return copy.deepcopy(DEFAULT_CONFIG)
    else:
        path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}

    return _deep_merge(DEFAULT_CONFIG, loaded)


def get_config(reload: bool = False) -> Dict[str, Any]:
    """
    Get the configuration singleton.

    Args:
        reload: If True, forces reloading the configuration from disk.
                Useful for testing or if the config file has changed.

    Returns:
        Dict containing all configuration values.

    Example:
        config = get_config()
        max_requests = config["abuse_guard"]["rate_limit"]["max_requests"]
    """
    global _config_instance

    if _config_instance is None or reload:
        _config_instance = load_config()

    return _config_instance


def get_section(section_name: str) -> Dict[str, Any]:
    """
    Get a specific section from the configuration.

    Args:
        section_name: Name of the configuration section
                      (e.g., "quality", "matching", "abuse_guard")

    Returns:
        Dict containing the section's configuration values.

    Raises:
        KeyError: If the section doesn't exist in the configuration.
    """
    config = get_config()

    if section_name not in config:
        raise KeyError(
            f"Configuration section '{section_name}' not found. "
            f"Available sections: {list(config.keys())}"
        )

    return config[section_name]


# Convenience functions for commonly used configuration sections
def get_quality_config() -> Dict[str, Any]:
    """Get quality scoring configuration."""
    return get_section("quality")


def get_matching_config() -> Dict[str, Any]:
    """Get matching/decision configuration."""
    return get_section("matching")


def get_enrollment_config() -> Dict[str, Any]:
    """Get enrollment validation configuration."""
    return get_section("enrollment")


def get_abuse_guard_config() -> Dict[str, Any]:
    """Get rate limiting and suspicious-client configuration."""
    return get_section("abuse_guard")


def get_storage_config() -> Dict[str, Any]:
    """Get storage configuration."""
    return get_section("storage")


def get_api_config() -> Dict[str, Any]:
    """Get API configuration."""
    return get_section("api")


def get_logging_config() -> Dict[str, Any]:
    """Get logging configuration."""
    return get_section("logging")


def get_server_config() -> Dict[str, Any]:
    """
    Get server configuration for the API.

    Returns:
        Dict with host and port for the API server.
    """
    api_config = get_api_config()
    base_url = api_config.get("base_url", "http://localhost:8000")

    # Format: http://host:port
    host = "0.0.0.0"
    port = 8000

    try:
        url_part = base_url.split("//")[-1]
        if ":" in url_part:
            host_part, port_str = url_part.rsplit(":", 1)
            port = int(port_str.rstrip("/"))
            if host_part != "localhost":
                host = host_part
    except (ValueError, IndexError):
        pass

    return {"host": host, "port": port}
