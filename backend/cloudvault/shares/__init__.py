from .routes import public_shares_bp, shares_bp

__all__ = ["public_shares_bp", "shares_bp"]
