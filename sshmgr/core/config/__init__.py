from sshmgr.core.config.manager import ConfigManager, require_runnable, resolve_config_path
from sshmgr.core.config.models import AppConfig, default_config_dict

__all__ = ["AppConfig", "ConfigManager", "default_config_dict", "require_runnable", "resolve_config_path"]
