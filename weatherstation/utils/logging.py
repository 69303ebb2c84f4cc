"""
Logging setup for the gateway.

The root logger gets a colored console handler and a rotating application
log. The Bluetooth and storage packages additionally write to their own
rotating files so a noisy radio does not drown the rest of the service.
"""

import logging
import logging.handlers
import sys
import time
from collections import deque
from contextlib import contextmanager
from pathlib import Path
from typing import Deque, Dict, Optional

import colorlog


DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
CONSOLE_FORMAT = '%(log_color)s%(asctime)s [%(levelname)8s] %(name)s: %(message)s'
FILE_FORMAT = '%(asctime)s [%(levelname)8s] %(name)s [%(threadName)s] %(message)s'
LOG_COLORS = {
    'DEBUG': 'cyan',
    'INFO': 'green',
    'WARNING': 'yellow',
    'ERROR': 'red',
    'CRITICAL': 'red,bg_white',
}

# logger name -> (file name, tag written in front of each record)
COMPONENT_LOGGERS = {
    'weatherstation.ble': ("bluetooth.log", "BLE"),
    'weatherstation.storage': ("storage.log", "DB"),
}


class ProductionLogger:
    """Installs the gateway's handlers; constructing one replaces any earlier setup."""

    def __init__(self,
                 app_name: str = "weatherstation",
                 log_dir: str = "./logs",
                 log_level: str = "INFO",
                 max_file_size: int = 10 * 1024 * 1024,
                 backup_count: int = 5,
                 enable_console: bool = True):
        self.app_name = app_name
        self.log_dir = Path(log_dir)
        self.log_level = logging.getLevelName(log_level.upper())
        self.max_file_size = max_file_size
        self.backup_count = backup_count
        self.enable_console = enable_console

        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._configure_root()
        self._configure_components()

    def _rotating(self, file_name: str, fmt: str) -> logging.Handler:
        handler = logging.handlers.RotatingFileHandler(
            self.log_dir / file_name,
            maxBytes=self.max_file_size,
            backupCount=self.backup_count,
        )
        handler.setFormatter(logging.Formatter(fmt, datefmt=DATE_FORMAT))
        return handler

    @staticmethod
    def _drop_handlers(logger: logging.Logger):
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

    def _configure_root(self):
        root = logging.getLogger()
        root.setLevel(self.log_level)
        self._drop_handlers(root)

        if self.enable_console:
            console = colorlog.StreamHandler(sys.stdout)
            console.setFormatter(colorlog.ColoredFormatter(
                CONSOLE_FORMAT, datefmt=DATE_FORMAT, log_colors=LOG_COLORS))
            root.addHandler(console)

        root.addHandler(self._rotating(f"{self.app_name}.log", FILE_FORMAT))

    def _configure_components(self):
        for name, (file_name, tag) in COMPONENT_LOGGERS.items():
            component = logging.getLogger(name)
            self._drop_handlers(component)
            component.addHandler(
                self._rotating(file_name, f'%(asctime)s [%(levelname)s] {tag}: %(message)s'))

    def get_logger(self, name: Optional[str] = None) -> logging.Logger:
        return logging.getLogger(name)


class PerformanceMonitor:
    """
    Keeps the most recent durations of named operations.

    Only a bounded window is kept per operation, so a gateway running for
    months does not grow without limit.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, window: int = 100):
        self.logger = logger or logging.getLogger('weatherstation.performance')
        self.window = window
        self.timings: Dict[str, Deque[float]] = {}

    def record(self, operation_name: str, duration: float):
        samples = self.timings.get(operation_name)
        if samples is None:
            samples = self.timings[operation_name] = deque(maxlen=self.window)
        samples.append(duration)

    @contextmanager
    def measure_time(self, operation_name: str):
        start = time.monotonic()
        try:
            yield
        finally:
            duration = time.monotonic() - start
            self.record(operation_name, duration)
            self.logger.debug(f"TIMING {operation_name}={duration:.3f}s")

    def summary(self) -> Dict[str, Dict[str, float]]:
        """Count, mean and max seconds per operation over the current window."""
        return {
            name: {
                'count': len(samples),
                'mean': sum(samples) / len(samples),
                'max': max(samples),
            }
            for name, samples in self.timings.items()
            if samples
        }


def setup_logging(config=None) -> ProductionLogger:
    """Install handlers as described by `config` (a fresh Config when omitted)."""
    if config is None:
        from .config import Config
        config = Config()

    return ProductionLogger(
        log_level=config.log_level,
        log_dir=str(config.log_dir),
        max_file_size=config.log_max_file_size,
        backup_count=config.log_backup_count,
        enable_console=config.log_enable_console,
    )
