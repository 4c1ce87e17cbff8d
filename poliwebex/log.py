import logging

from colorama import Fore, Style, init as colorama_init


# Initialize colorama for cross-platform colored output
colorama_init()


class ColoredFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": Fore.CYAN,
        "INFO": Fore.GREEN,
        "WARNING": Fore.YELLOW,
        "ERROR": Fore.RED,
        "CRITICAL": Fore.RED + Style.BRIGHT,
    }

    def format(self, record):
        # Copy so other handlers see the plain level name
        log_record = logging.makeLogRecord(record.__dict__)
        levelname = log_record.levelname
        if levelname in self.COLORS:
            log_record.levelname = f"{self.COLORS[levelname]}{levelname}{Style.RESET_ALL}"
        return super().format(log_record)


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a colored console handler to the package logger."""
    logger = logging.getLogger("poliwebex")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    if logger.hasHandlers():
        logger.handlers.clear()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(ColoredFormatter("%(asctime)s - %(levelname)s - %(message)s", datefmt="%H:%M:%S"))
    logger.addHandler(console_handler)
    logger.propagate = False
    return logger
