"""Positive-result log shared by concurrent scans."""

import threading
from pathlib import Path
from typing import Optional, Union

from templar.utils import logger

_results_lock = threading.Lock()


def format_positive_result(target: str, template_id: str) -> str:
    return f"{target} -> {template_id}"


def save_positive_result(
    path: Optional[Union[str, Path]],
    target: str,
    template_id: str,
) -> None:
    """Append a ``target -> templateID`` line to the results log.

    A write failure is logged, not raised: losing one line must not stop a scan.
    """
    if not path:
        return
    line = format_positive_result(target, template_id)
    with _results_lock:
        try:
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.error(f"error writing to {path}: {e}")
