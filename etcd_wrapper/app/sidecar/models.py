# etcd_wrapper/app/sidecar/models.py
from __future__ import annotations

from enum import Enum


class InitStatus(str, Enum):
    UNKNOWN = "Unknown"
    NEW = "New"
    IN_PROGRESS = "InProgress"
    SUCCESSFUL = "Successful"


class ValidationType(str, Enum):
    SANITY = "sanity"
    FULL = "full"


def parse_init_status(body: str) -> InitStatus:
    """
    Map a status response body onto InitStatus.

    Only "New" and "Successful" are matched exactly; every other body,
    including "InProgress" and unrecognised text, is InProgress.
    """
    if body == InitStatus.NEW.value:
        return InitStatus.NEW
    if body == InitStatus.SUCCESSFUL.value:
        return InitStatus.SUCCESSFUL
    return InitStatus.IN_PROGRESS
