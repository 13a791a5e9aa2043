"""Error kinds raised by the search engine."""


class SearchError(Exception):
    """Base class for search engine errors."""

    pass


class SearchValidationError(SearchError):
    """Raised when a required parameter is missing or invalid."""

    pass


class SearchAuthorizationError(SearchError):
    """Raised when the caller may not search the requested collection."""

    pass


class SearchExecutionError(SearchError):
    """Raised when the document store fails to execute a pipeline."""

    def __init__(self, collection: str, message: str):
        super().__init__(f"{collection}: {message}")
        self.collection = collection
