from .settings import PressTalkConfig, load_config, resolve_api_key, setup_logging

__all__ = [
    "PressTalkConfig",
    "load_config",
    "resolve_api_key",
    "setup_logging",
]
