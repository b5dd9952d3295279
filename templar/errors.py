"""Exception hierarchy for template loading and execution."""


class TemplarError(Exception):
    """Base class for all engine errors."""


class TemplateLoadError(TemplarError):
    """A file could not be parsed as a template."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"failed to parse file {path}: {reason}")
        self.path = path
        self.reason = reason


class ProfileDocumentError(TemplateLoadError):
    """The file is a scan-profile selector document, not a template."""

    def __init__(self, path: str):
        super().__init__(path, "skipping profile file")


class FlowError(TemplarError):
    """A flow expression references a request that does not exist."""


class DSLError(TemplarError):
    """A DSL expression is malformed or does not evaluate to a boolean."""


class RequestError(TemplarError):
    """A request failed for a reason that retrying will not fix."""


class TransientRequestError(RequestError):
    """A request failed with a retryable network condition."""


class UnsupportedRequestError(RequestError):
    """The request declares a protocol or option the executor cannot serve."""


class HeadlessError(TemplarError):
    """A headless tab failed to navigate or render."""


class BrowserStartError(HeadlessError):
    """The shared browser could not be started."""


class SettingsError(TemplarError):
    """Settings could not be read or validated."""
