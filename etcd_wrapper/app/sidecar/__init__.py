from .client import HttpSidecarClient, SidecarClient, create_session
from .models import InitStatus, ValidationType, parse_init_status

__all__ = [
    "HttpSidecarClient",
    "SidecarClient",
    "create_session",
    "InitStatus",
    "ValidationType",
    "parse_init_status",
]
