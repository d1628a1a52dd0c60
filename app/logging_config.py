import logging

from app.config import LOG_LEVEL


_STANDARD_ATTRS = set(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


class ExtraFormatter(logging.Formatter):
    """Append the ``extra={...}`` context of a record as key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = {k: v for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS}
        if not extras:
            return base
        rendered = " ".join(f"{k}={v}" for k, v in sorted(extras.items()))
        return f"{base} | {rendered}"


def configure_logging(level: str | None = None) -> None:
    root = logging.getLogger()
    if getattr(root, "_autogift_configured", False):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(ExtraFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel((level or LOG_LEVEL).upper())
    root._autogift_configured = True
