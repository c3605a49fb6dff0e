from .config_manager import ConfigManager
from .settings import DownloadConfig, StorageConfig, UploadConfig

__all__ = ["ConfigManager", "DownloadConfig", "StorageConfig", "UploadConfig"]
