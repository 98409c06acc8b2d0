import contextvars
import logging
import sys
from configparser import RawConfigParser
from contextlib import contextmanager
from logging import Logger
from logging import config as logging_config
from typing import TYPE_CHECKING, Any, Callable, Dict, Generator, Optional, Tuple, cast

from keydoor import config, json

if TYPE_CHECKING:
    from logging import LogRecord

# Default logging configuration
DEFAULT_LOGGING_CONFIG = {
    "version": 1,
    "root": {"level": "INFO", "handlers": ["consoleHandler"]},
    "loggers": {
        "keydoor": {
            "level": "INFO",
        },
    },
    "handlers": {
        "consoleHandler": {
            "class": "logging.StreamHandler",
            "level": "INFO",
            "formatter": "formatter_formatter",
            "stream": "ext://sys.stdout",
        }
    },
    "formatters": {
        "formatter_formatter": {
            "format": "%(asctime)s.%(msecs)03d - %(name)s - %(levelname)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
}

try:
    logging_config.dictConfig(DEFAULT_LOGGING_CONFIG)
except KeyError:
    logging.basicConfig(format="%(asctime)s %(name)-12s %(levelname)-8s %(message)s", level=logging.DEBUG)


event_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("event_id")


def set_log_func(loglevel: int, logger: Logger) -> Callable[..., None]:
    """
    Returns the logging function (e.g., info, debug) matching the provided log level.

    Args:
        loglevel (int): The desired log level (e.g., logging.INFO).
        logger (Logger): The logger instance to use.

    Returns:
        Callable[..., None]: The logger function corresponding to the log level.
    """
    log_func = logger.info

    if loglevel == logging.CRITICAL:
        log_func = logger.critical
    elif loglevel == logging.ERROR:
        log_func = logger.error
    elif loglevel == logging.WARNING:
        log_func = logger.warning
    elif loglevel == logging.INFO:
        log_func = logger.info
    elif loglevel == logging.DEBUG:
        log_func = logger.debug

    return log_func


def log_decision(logger: Logger, loglevel: int, record: Dict[str, Any]) -> bool:
    """
    Emits one structured record describing an access decision or unlock outcome.

    The payload is rendered as JSON in the message, so it can be scraped from
    plain text logs, and is also attached to the LogRecord as ``decision``.

    Args:
        logger (Logger): The logger instance to use.
        loglevel (int): The log level of the record.
        record (Dict[str, Any]): The decision payload; must contain "event" and "identity".

    Returns:
        bool: True if the record was logged, False if the payload was malformed.
    """
    if None in [record, logger]:
        return False

    if not all(x in record for x in ["event", "identity"]):
        logger.error("Error: malformed decision record %s", record)
        return False

    log_func = set_log_func(loglevel, logger)
    log_func("decision %s", json.dumps(record, sort_keys=True), extra={"decision": record})
    return True


def annotate_logger(logger: Logger) -> None:
    """
    Adds an event ID filter to all handlers of the specified logger.

    Args:
        logger (Logger): The logger instance to annotate.
    """
    event_id_filter = EventIDFilter()

    for handler in logger.handlers:
        handler.addFilter(event_id_filter)


def _configure_logging_from_raw(raw_config: RawConfigParser) -> None:
    """
    Dynamically configures logging based on a RawConfigParser object.

    Args:
        raw_config (RawConfigParser): The source configuration containing logging sections.
    """
    formatters = {}
    for section in raw_config.sections():
        if section.startswith("formatter_"):
            formatter_name = section.split("_", 1)[1]
            formatter_options = dict(raw_config.items(section))
            format_str = formatter_options.get("format", "%(message)s")
            datefmt = formatter_options.get("datefmt", None)
            formatters[formatter_name] = logging.Formatter(format_str, datefmt)

    handlers = {}
    for section in raw_config.sections():
        if section.startswith("handler_"):
            handler_name = section.split("_", 1)[1]
            handler_options = dict(raw_config.items(section))
            handler_class = handler_options.get("class", "logging.StreamHandler")
            level = handler_options.get("level", "NOTSET").upper()
            formatter_name = handler_options.get("formatter", "NOTSET")

            args = _parse_args(handler_options.get("args", "()"))
            handler: logging.Handler
            try:
                if "StreamHandler" in handler_class:
                    handler = logging.StreamHandler(stream=sys.stdout if not args else args[0])
                elif "FileHandler" in handler_class:
                    filename = args[0]
                    handler = logging.FileHandler(filename=filename)
                else:
                    raise ValueError(f"Unsupported handler class: {handler_class}")

                handler.setLevel(getattr(logging, level, logging.NOTSET))
                if formatter_name in formatters:
                    handler.setFormatter(formatters[formatter_name])

                handlers[handler_name] = handler
            except Exception as e:
                print(f"Error configuring handler {handler_name}: {e}", file=sys.stderr)

    if "logger_root" in raw_config.sections():
        root_logger = logging.getLogger()
        root_options = dict(raw_config.items("logger_root"))
        level = root_options.get("level", "NOTSET").upper()
        handler_names = [name.strip() for name in root_options.get("handlers", "").split(",") if name]

        root_logger.setLevel(level)
        root_logger.handlers = []

        for handler_name in handler_names:
            if handler_name in handlers:
                root_logger.addHandler(handlers[handler_name])

    for section in raw_config.sections():
        if section.startswith("logger_") and section != "logger_root":
            logger_name = section.split("_", 1)[1]
            logger_options = dict(raw_config.items(section))
            level = logger_options.get("level", "NOTSET").upper()
            propagate = logger_options.get("propagate", "1") == "1"
            handler_names = [name.strip() for name in logger_options.get("handlers", "").split(",") if name]

            logger = logging.getLogger(logger_name)
            logger.setLevel(level)
            logger.propagate = propagate

            logger.handlers = []
            for handler_name in handler_names:
                if handler_name in handlers:
                    logger.addHandler(handlers[handler_name])


def _parse_args(args_str: str) -> Tuple[Any, ...]:
    """
    Safely parse the `args` string of a handler section, e.g. "(sys.stdout,)".
    """
    if args_str == "()":
        return ()

    if args_str.startswith("(") and args_str.endswith(")"):
        args_list = [arg.strip() for arg in args_str[1:-1].split(",") if arg.strip()]
        parsed_args = []
        for arg in args_list:
            if arg == "sys.stdout":
                parsed_args.append(sys.stdout)
            elif arg == "sys.stderr":
                parsed_args.append(sys.stderr)
            else:
                parsed_args.append(arg.strip("'\""))
        return tuple(parsed_args)

    raise ValueError(f"Invalid args format: {args_str}")


@contextmanager
def _safe_logging_configuration() -> Generator[None, None, None]:
    """
    Context manager to safely apply logging configuration. If an error occurs,
    all loggers (root and named) are restored to their original state.
    """
    existing_loggers: dict[str, dict[str, list[logging.Handler] | int | bool]] = {
        name: {
            "handlers": list(logger.handlers),
            "level": logger.level,
            "propagate": logger.propagate,
        }
        for name, logger in logging.Logger.manager.loggerDict.items()
        if isinstance(logger, logging.Logger)
    }
    root_logger: Logger = logging.getLogger()
    root_backup: dict[str, list[logging.Handler] | int] = {
        "handlers": list(root_logger.handlers),
        "level": root_logger.level,
    }

    try:
        yield
    except Exception:
        for name, logger in logging.Logger.manager.loggerDict.items():
            if name in existing_loggers and isinstance(logger, logging.Logger):
                logger.handlers = cast(list[logging.Handler], existing_loggers[name]["handlers"])
                logger.level = cast(int, existing_loggers[name]["level"])
                logger.propagate = cast(bool, existing_loggers[name]["propagate"])
        root_logger.handlers = cast(list[logging.Handler], root_backup["handlers"])
        root_logger.setLevel(cast(int, root_backup["level"]))
        raise


def _safe_get_config(component: str) -> Optional[RawConfigParser]:
    try:
        return config.get_config(component)
    except Exception:
        return None


def init_logging(loggername: str) -> Logger:
    """
    Initializes the logging system for a specific logger.

    The logging component configuration is applied if present, noisy library
    loggers are quieted, and the root handlers are annotated with the event ID
    filter so that records emitted while evaluating a presentation carry it.

    Args:
        loggername (str): The name of the logger to initialize.

    Returns:
        Logger: The initialized logger instance.
    """
    logger = logging.getLogger(f"keydoor.{loggername}")

    logging_conf = _safe_get_config("logging")

    if logging_conf and logging_conf.sections():
        try:
            with _safe_logging_configuration():
                _configure_logging_from_raw(logging_conf)
        except Exception as e:
            logger.error("Logging configuration error: %s", e)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("tornado.general").disabled = True
    logging.getLogger("tornado.access").disabled = True

    annotate_logger(logging.getLogger())

    return logger


class EventIDFilter(logging.Filter):
    """
    A logging filter that adds the ID of the presentation event being evaluated.

    The ID is read from the `event_id_var` context variable and attached to
    each record as `evid` (raw) and `evidf` (formatted, empty when unset).
    """

    def filter(self, record: "LogRecord") -> bool:
        evid = event_id_var.get("")

        record.evid = evid
        record.evidf = f"(evid={evid})" if evid else ""

        return True
