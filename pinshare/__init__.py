from .app import create_app
from .settings import Settings, load_settings

__all__ = ["create_app", "Settings", "load_settings"]
