"""CLI logging setup: simple %(message)s format for standalone commands."""

import logging
import sys

from oraboot.redact import SecretRedactingFilter


def setup_cli_logging(verbose=False):
    """Configure root logger with plain message format for CLI commands.

    With *verbose*, switches to DEBUG and prefixes each line with the
    logger's last name segment (``[remote]``, ``[oracle]``...).
    """
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    root.handlers.clear()
    handler = logging.StreamHandler(sys.stdout)
    if verbose:
        handler.setFormatter(_ShortNameFormatter("%(asctime)s [%(name)s] %(message)s", datefmt="%H:%M:%S"))
    else:
        handler.setFormatter(logging.Formatter("%(message)s"))
    # Filters on the handler also see records propagated from child loggers
    handler.addFilter(SecretRedactingFilter())
    root.addHandler(handler)

    # The OCI SDK and httpx are chatty at INFO
    for name in ("oci", "httpx", "httpcore", "urllib3"):
        logging.getLogger(name).setLevel(logging.WARNING)


class _ShortNameFormatter(logging.Formatter):
    """``oraboot.provisioning.remote`` -> ``remote``."""

    def format(self, record):
        if record.name.startswith("oraboot."):
            record.name = record.name.rsplit(".", 1)[-1]
        return super().format(record)
