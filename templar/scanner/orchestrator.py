"""Single-URL checks and batch scans over many targets."""

import asyncio
import logging
import time
from typing import Callable, List, Optional

from templar.config import (
    AdvancedSettings,
    CheckResult,
    ScanReport,
    Template,
    TemplateMatch,
)
from templar.results import save_positive_result
from templar.scanner.engine import ProgressCallback, TargetCheck
from templar.services import ScanServices
from templar.utils import logger as default_logger
from templar.utils import sanitize_url, validate_url


def _template_match(target: str, template: Template) -> TemplateMatch:
    return TemplateMatch(
        target=target,
        template_id=template.id,
        name=template.info.name,
        severity=str(getattr(template.info.severity, "value", template.info.severity)),
    )


async def check_url(
    url: str,
    templates: List[Template],
    settings: AdvancedSettings,
    services: ScanServices,
    progress_callback: Optional[ProgressCallback] = None,
    logger: Optional[logging.Logger] = None,
    timeout: Optional[float] = None,
) -> CheckResult:
    """Match every template against one URL under a top-level deadline.

    An expired deadline returns the templates matched so far with status
    ``cancelled``. Task cancellation and browser start failures propagate.
    """
    logger = logger or default_logger
    result = CheckResult(url=url, total=len(templates))

    is_valid, error = validate_url(url)
    if not is_valid:
        result.status = "error"
        result.error = error
        return result

    check = TargetCheck(url, templates, settings, services, progress_callback, logger)
    start = time.monotonic()
    try:
        await asyncio.wait_for(check.run(), timeout or settings.timeout)
    except asyncio.TimeoutError:
        logger.warning(f"Check of {sanitize_url(url)} exceeded its deadline")
        result.status = "cancelled"
        result.error = "deadline exceeded"
    finally:
        result.duration_seconds = time.monotonic() - start
        result.checked = check.completed
        result.errors = list(check.errors)
        result.matched = [_template_match(url, t) for t in check.matched]

    return result


async def run_scan(
    targets: List[str],
    templates: List[Template],
    settings: AdvancedSettings,
    services: ScanServices,
    progress_callback: Optional[Callable[[ScanReport], None]] = None,
    stop_event: Optional[asyncio.Event] = None,
    logger: Optional[logging.Logger] = None,
) -> ScanReport:
    """Scan every target with every template using a pool of target workers.

    Each target gets its own deadline (``settings.timeout``). Setting
    ``stop_event`` drops queued targets, cancels in-flight checks and marks
    the report as cancelled.
    """
    logger = logger or default_logger
    start = time.monotonic()
    report = ScanReport(templates_loaded=len(templates))
    report.stats.targets_loaded = len(targets)

    queue: asyncio.Queue = asyncio.Queue()
    for target in targets:
        queue.put_nowait(target)

    async def process(target: str) -> None:
        started = time.monotonic()
        try:
            result = await check_url(target, templates, settings, services, logger=logger)
        finally:
            report.stats.processed += 1
            report.stats.total_duration_ms += (time.monotonic() - started) * 1000

        failed = result.status != "ok"
        if failed:
            report.add_error(f"{target}: {result.error}")
        for error in result.errors:
            report.add_error(f"{target}: {error}")
        for match in result.matched:
            report.add_match(target, match.template_id)
            save_positive_result(settings.results_file, target, match.template_id)
            logger.info(f"[+] {target} -> {match.template_id}")

        if failed:
            report.stats.errors += 1
        elif result.matched:
            report.stats.successes += 1
        if progress_callback:
            progress_callback(report)

    async def worker() -> None:
        while True:
            try:
                target = queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            await process(target)

    logger.info(f"Scanning {len(targets)} targets with {len(templates)} templates")
    workers = [
        asyncio.create_task(worker())
        for _ in range(min(settings.target_workers, len(targets)))
    ]

    stopper = asyncio.create_task(stop_event.wait()) if stop_event is not None else None
    pending = set(workers)
    try:
        while pending:
            waiting = pending | {stopper} if stopper is not None else pending
            done, _ = await asyncio.wait(waiting, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task is stopper:
                    continue
                pending.discard(task)
                # re-raises a worker failure such as a browser that cannot start
                task.result()
            if stopper is not None and stopper.done() and pending:
                report.cancelled = True
                logger.warning("Scan stopped, dropping pending targets")
                break
    finally:
        if stopper is not None:
            stopper.cancel()
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        report.duration_seconds = time.monotonic() - start

    logger.info(report.stats.format())
    return report
