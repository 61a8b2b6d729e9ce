from .routes import trash_bp
from .scheduler import start_purge_scheduler, trash_cli

__all__ = ["start_purge_scheduler", "trash_bp", "trash_cli"]
