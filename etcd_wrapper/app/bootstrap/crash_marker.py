# etcd_wrapper/app/bootstrap/crash_marker.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

from ..sidecar.models import ValidationType

logger = logging.getLogger("etcd_wrapper.bootstrap.crash_marker")

DEFAULT_EXIT_CODE_FILE_PATH = Path("/var/etcd/data/exit_code")

# Signal names recorded by a graceful shutdown; anything else means the
# previous run ended in an unknown state.
SANITY_MARKERS = frozenset({"interrupt", "terminated"})


class CrashMarkerStore:
    """
    Single-line file recording which signal ended the previous run.

    Rules:
    - Written once by the shutdown path (temp file + rename).
    - Read once at startup to pick the validation mode.
    - Removed after etcd reports ready; a missing file is not an error.
    """

    def __init__(self, path: Union[str, Path] = DEFAULT_EXIT_CODE_FILE_PATH):
        self.path = Path(path)

    def write(self, signal_name: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(signal_name, encoding="utf-8")
        tmp.replace(self.path)
        logger.info(f"Crash marker '{signal_name}' written to {self.path}")

    def read(self) -> Optional[str]:
        """Return the stripped marker text, or None when the file is absent or unreadable."""
        try:
            return self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(f"Unable to read crash marker {self.path}: {exc}")
            return None

    def validation_mode(self) -> ValidationType:
        marker = self.read()
        if marker in SANITY_MARKERS:
            mode = ValidationType.SANITY
        else:
            mode = ValidationType.FULL
        logger.info(f"Crash marker={marker!r}, selected validation mode '{mode.value}'")
        return mode

    def cleanup(self) -> None:
        self.path.unlink(missing_ok=True)
        logger.info(f"Crash marker {self.path} removed")
