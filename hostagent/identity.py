"""Instance identity — a stable ID for this host, kept on disk.

The first run writes a fresh uuid to the ID file; later runs read it back so
the controller sees the same instance across agent restarts.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path

from hostagent.types import InstanceId

_logger = logging.getLogger(__name__)


def new_instance_id() -> InstanceId:
    return uuid.uuid4().hex


def get_or_create_instance_id(path: Path) -> InstanceId:
    """Read the persisted ID, creating it if absent.

    If the file can't be read or written, a fresh unpersisted ID is
    returned and the error logged.
    """
    try:
        if path.exists():
            existing = path.read_text(encoding="utf-8").strip()
            if existing:
                return existing
        instance_id = new_instance_id()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(instance_id, encoding="utf-8")
        return instance_id
    except OSError as e:
        _logger.error("Could not persist instance ID at %s: %s", path, e)
        return new_instance_id()
