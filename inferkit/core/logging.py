"""
inferkit :: Structured Logging

Library modules only call get_logger(); handlers are installed once by
setup_logging() (the CLI does this, see --log-level / --json-logs /
--log-file).

Generation calls log through RequestLogger, which stamps every record
with the request id and the generation fields (prompt_tokens,
generated_tokens, finish_reason, timings) so both formatters can render
them.

INL - 2025
"""

import logging
import json
import time
import sys
from typing import Optional, TextIO


class JSONFormatter(logging.Formatter):
    """One JSON object per line; generation fields are flattened into it."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "request_id"):
            log_entry["request_id"] = record.request_id
        if hasattr(record, "extra_data"):
            log_entry.update(record.extra_data)
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


class HumanFormatter(logging.Formatter):
    """Readable single-line format. Colours only when writing to a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[41m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        ts = self.formatTime(record, "%H:%M:%S")
        level = f"[{record.levelname:>7}]"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"
        msg = f"{ts} {level} {record.name}: {record.getMessage()}"
        if hasattr(record, "request_id"):
            msg += f" [req={record.request_id}]"
        if getattr(record, "extra_data", None):
            pairs = " ".join(f"{k}={v}" for k, v in record.extra_data.items())
            msg += f" ({pairs})"
        if record.exc_info and record.exc_info[1]:
            msg += "\n" + self.formatException(record.exc_info)
        return msg


def setup_logging(
    level: str = "INFO",
    json_output: bool = False,
    log_file: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configure the `inferkit` logger tree.

    Args:
        level: DEBUG, INFO, WARNING or ERROR
        json_output: JSON lines on the console instead of the human format
        log_file: also append JSON lines to this file
        stream: console stream (default: stderr)

    Calling it again replaces (and closes) the handlers of the previous call.
    """
    logger = logging.getLogger("inferkit")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    stream = stream or sys.stderr
    if json_output:
        formatter = JSONFormatter()
    else:
        formatter = HumanFormatter(use_color=hasattr(stream, "isatty") and stream.isatty())

    console = logging.StreamHandler(stream)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(JSONFormatter())
        logger.addHandler(fh)

    return logger


def get_logger(name: str = "inferkit") -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)


class RequestLogger:
    """
    Logging for one generate() call.

    Measures time to first token and total latency; finish() emits the
    summary record.
    """

    def __init__(self, request_id: int, logger: Optional[logging.Logger] = None):
        self.request_id = request_id
        self.logger = logger or get_logger("inferkit.generation")
        self.start_time = time.perf_counter()
        self.first_token_time: Optional[float] = None

    def _log(self, level: int, msg: str, **fields):
        self.logger.log(level, msg, extra={"request_id": self.request_id, "extra_data": fields})

    def prefill_done(self, prompt_tokens: int):
        self._log(logging.DEBUG, "Prefill done", prompt_tokens=prompt_tokens,
                  elapsed_ms=round(self.elapsed_ms(), 2))

    def token_sampled(self):
        if self.first_token_time is None:
            self.first_token_time = time.perf_counter()

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.start_time) * 1000

    def time_to_first_token_ms(self) -> Optional[float]:
        if self.first_token_time is None:
            return None
        return (self.first_token_time - self.start_time) * 1000

    def finish(self, prompt_tokens: int, generated_tokens: int, finish_reason: str) -> float:
        """Log the summary record; returns the total elapsed milliseconds."""
        elapsed = self.elapsed_ms()
        ttft = self.time_to_first_token_ms()
        self._log(
            logging.INFO,
            "Generation finished",
            prompt_tokens=prompt_tokens,
            generated_tokens=generated_tokens,
            finish_reason=finish_reason,
            elapsed_ms=round(elapsed, 2),
            ttft_ms=round(ttft, 2) if ttft is not None else None,
            tokens_per_s=round(generated_tokens * 1000 / elapsed, 2) if elapsed > 0 else None,
        )
        return elapsed
