from .errors import MwError, MwErrorPayload, make_mw_error
from .settings import MwSettings, load_settings

__all__ = [
    "MwError",
    "MwErrorPayload",
    "MwSettings",
    "load_settings",
    "make_mw_error",
]
