"""
Shared Utilities
================
Common functions used across all modules.
"""

import json
import logging
import time
import uuid
from pathlib import Path
from typing import Any, Union

logger = logging.getLogger(__name__)


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def generate_prediction_id(timestamp: int) -> str:
    """Unique prediction id, e.g. 'pred_1700000000000_3f9a1c2b7'."""
    return f"pred_{timestamp}_{uuid.uuid4().hex[:9]}"


def write_json(path: Union[str, Path], data: Any) -> Path:
    """
    Write data as indented JSON, creating parent directories.

    The file is written to '<path>.tmp' and renamed into place.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    tmp_path = path.with_suffix(path.suffix + '.tmp')
    with open(tmp_path, 'w') as f:
        json.dump(data, f, indent=2)
    tmp_path.replace(path)

    logger.debug(f"Wrote {path}")
    return path


def read_json(path: Union[str, Path]) -> Any:
    """Read a JSON file."""
    with open(path, 'r') as f:
        return json.load(f)
