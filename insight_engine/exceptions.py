"""Error hierarchy for the Insight Engine."""


class InsightEngineError(Exception):
    """Base exception for all Insight Engine errors."""


class CatalogError(InsightEngineError):
    """Raised when a rule catalog document cannot be read or parsed at all.

    Individual malformed rules never raise; they are skipped while loading.
    """


class ContextFetchError(InsightEngineError):
    """Raised when the context snapshot could not be fetched from its provider."""
