"""Flask integration: report unhandled request exceptions with request metadata."""

import logging

from flask import got_request_exception, request
from werkzeug.exceptions import HTTPException

DEFAULT_LOGGER_NAME = "slack_log_device.flask"


def init_app(app, logger: logging.Logger | None = None) -> logging.Logger:
    """Log every unhandled exception of *app* at CRITICAL on *logger*.

    Attach a SlackLogHandler to the returned logger to ship the reports.
    HTTP errors raised on purpose (``abort(404)``) are not reported.
    """
    if logger is None:
        logger = logging.getLogger(DEFAULT_LOGGER_NAME)

    def report_exception(sender, exception, **extra):
        if isinstance(exception, HTTPException):
            return
        logger.critical(
            "Unhandled exception",
            exc_info=(type(exception), exception, exception.__traceback__),
            extra={"request": request._get_current_object()},
        )

    # weak=False keeps the closure alive for as long as the app is.
    got_request_exception.connect(report_exception, app, weak=False)
    app.extensions["slack_log_device"] = logger
    return logger
