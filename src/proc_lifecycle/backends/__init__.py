from .base import ProcessBackend

__all__ = ["ProcessBackend"]
