from .cli import users_cli
from .routes import admin_bp

__all__ = ["admin_bp", "users_cli"]
