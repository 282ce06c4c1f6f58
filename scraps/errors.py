"""
Error taxonomy for scraps.

Only the fatal categories are exceptions. Selector misses and nesting-depth
truncation are recovered where they happen and never surface here.
"""


class ScrapsError(Exception):
    """Base class for every error raised by scraps."""


class ConfigError(ScrapsError):
    """Invalid or incomplete configuration, detected before anything runs.

    Aborts the whole run (missing entry point URL, missing follow/extract
    rules, missing extraction destination, malformed extraction config).
    """


class ContractViolation(ScrapsError):
    """A run-time collaborator contract was broken.

    Raised when a custom extraction Step fires but no extractor is registered
    under its ``emit`` name. Aborts the run.
    """

    def __init__(self, message: str, emit: str = "", selector: str = ""):
        super().__init__(message)
        self.emit = emit
        self.selector = selector


class NavigationError(ScrapsError):
    """A page could not be opened. Fatal for that URL only."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Could not open {url}: {reason}")
        self.url = url
        self.reason = reason
