from .bootstrap import create_app
from .service import MagService

__all__ = ["MagService", "create_app"]
