from .routes import activity_bp

__all__ = ["activity_bp"]
