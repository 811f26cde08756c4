"""Logging setup shared by the API process and the arq worker.

structlog renders everything, including records from stdlib loggers (the
worker jobs, uvicorn, arq), so one process emits one format.
"""

import logging

import structlog

from drtrack.config import Settings

# Client libraries that log every request at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore", "aiosmtplib")


def _tag_component(component: str) -> structlog.types.Processor:
    def processor(_logger: object, _method: str, event_dict: structlog.types.EventDict) -> structlog.types.EventDict:
        event_dict.setdefault("component", component)
        return event_dict

    return processor


def setup_logging(settings: Settings, component: str = "api") -> None:
    """Configure JSON (production) or console (development) output for ``component``."""
    shared: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _tag_component(component),
    ]
    renderer: structlog.types.Processor
    if settings.log_format == "json":
        renderer = structlog.processors.JSONRenderer()
        exc_renderer: list[structlog.types.Processor] = [structlog.processors.format_exc_info]
    else:
        # ConsoleRenderer prints tracebacks itself.
        renderer = structlog.dev.ConsoleRenderer()
        exc_renderer = []

    structlog.configure(
        processors=[
            *shared,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler()
    handler.set_name("drtrack")
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *exc_renderer, renderer],
        )
    )
    root = logging.getLogger()
    root.handlers = [h for h in root.handlers if h.get_name() != "drtrack"]
    root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO if settings.debug else logging.WARNING)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
