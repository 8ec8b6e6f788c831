import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from monk_manager.agent.events import EngineEvents, EventBus
from monk_manager.utils.sensitive_str import sanitize_for_logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO", log_file: Optional[Path] = None) -> None:
    """
    Configure the root logger once per process.

    Stderr always gets WARNING and above so the terminal output stays
    readable; the optional file handler receives everything at ``level``.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in list(root_logger.handlers):
        if getattr(handler, "_monk_handler", False):
            root_logger.removeHandler(handler)
            handler.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(max(logging.WARNING, logging.getLevelName(level)))
    console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    console._monk_handler = True
    root_logger.addHandler(console)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(log_path), mode="a", encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler._monk_handler = True
        root_logger.addHandler(file_handler)


class EventLogger:
    """
    Observability sink for engine events.

    Subscribes to the bus and turns each structured event into one log
    record. Payloads are sanitized so credentials never reach a handler.
    """

    def __init__(self, bus: EventBus, logger_name: str = "monk_manager.events"):
        self._bus = bus
        self._logger = logging.getLogger(logger_name)

    def start(self) -> None:
        self._bus.subscribe(EngineEvents.REQUEST_STARTED.value, self._log_started)
        self._bus.subscribe(EngineEvents.REQUEST_COMPLETED.value, self._log_completed)
        self._bus.subscribe(EngineEvents.REQUEST_FAILED.value, self._log_failed)
        self._bus.subscribe(EngineEvents.CACHE_HIT.value, self._log_cache)
        self._bus.subscribe(EngineEvents.CACHE_MISS.value, self._log_cache)
        self._bus.subscribe(EngineEvents.RETRY_ATTEMPT.value, self._log_retry)
        self._bus.subscribe(EngineEvents.RATE_LIMIT_WAIT.value, self._log_rate_limit)
        self._bus.subscribe(EngineEvents.STREAM_CANCELLED.value, self._log_cancelled)

    def stop(self) -> None:
        self._bus.unsubscribe(EngineEvents.REQUEST_STARTED.value, self._log_started)
        self._bus.unsubscribe(EngineEvents.REQUEST_COMPLETED.value, self._log_completed)
        self._bus.unsubscribe(EngineEvents.REQUEST_FAILED.value, self._log_failed)
        self._bus.unsubscribe(EngineEvents.CACHE_HIT.value, self._log_cache)
        self._bus.unsubscribe(EngineEvents.CACHE_MISS.value, self._log_cache)
        self._bus.unsubscribe(EngineEvents.RETRY_ATTEMPT.value, self._log_retry)
        self._bus.unsubscribe(EngineEvents.RATE_LIMIT_WAIT.value, self._log_rate_limit)
        self._bus.unsubscribe(EngineEvents.STREAM_CANCELLED.value, self._log_cancelled)

    # --- Handlers ---

    def _log_started(self, data: Dict[str, Any]) -> None:
        data = sanitize_for_logging(data)
        self._logger.info(
            "request started model=%s stream=%s fingerprint=%s",
            data.get("model"),
            data.get("stream"),
            data.get("fingerprint"),
        )

    def _log_completed(self, data: Dict[str, Any]) -> None:
        data = sanitize_for_logging(data)
        self._logger.info(
            "request completed cached=%s chars=%s elapsed=%.3fs",
            data.get("cached"),
            data.get("chars"),
            data.get("elapsed", 0.0),
        )

    def _log_failed(self, data: Dict[str, Any]) -> None:
        data = sanitize_for_logging(data)
        self._logger.info(
            "request failed kind=%s error=%s", data.get("kind"), data.get("error")
        )

    def _log_cache(self, data: Dict[str, Any]) -> None:
        self._logger.debug(
            "cache %s fingerprint=%s", data.get("result"), data.get("fingerprint")
        )

    def _log_retry(self, data: Dict[str, Any]) -> None:
        data = sanitize_for_logging(data)
        self._logger.warning(
            "retry attempt %s/%s in %.2fs after %s",
            data.get("attempt"),
            data.get("max_attempts"),
            data.get("delay", 0.0),
            data.get("error"),
        )

    def _log_rate_limit(self, data: Dict[str, Any]) -> None:
        self._logger.info("rate limit wait %.2fs", data.get("wait", 0.0))

    def _log_cancelled(self, data: Dict[str, Any]) -> None:
        self._logger.info(
            "stream cancelled, discarded %s buffered chars", data.get("discarded_chars", 0)
        )
