from .eta import eta_bp

__all__ = ["eta_bp"]
