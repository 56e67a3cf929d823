"""Exception types raised by the exporter."""


class ExportError(Exception):
    """Base class for exporter failures."""


class BackendError(ExportError):
    """The chat backend refused a login or a history request."""


class SinkError(ExportError):
    """A sink is unreachable or rejected part of a write."""


class DuplicateMessageError(ExportError):
    """A message id was added to a retention buffer that already holds it."""
