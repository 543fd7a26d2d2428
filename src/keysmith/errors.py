class KeysmithError(Exception):
    """
    base class for every error raised by keysmith operations.
    """


class AlreadyExistsError(KeysmithError):
    pass


class NotFoundError(KeysmithError):
    pass


class NoKeysAvailableError(KeysmithError):
    pass


class AdminKeyMissingError(KeysmithError):
    pass


class UpstreamError(KeysmithError):
    """
    UpstreamError is raised when the billing API call fails. Errors
    that escape an ingestion run carry the progress made before the
    failure, since pages committed earlier are kept.
    """

    def __init__(self, message: "str", status_code: "int | None" = None) -> "None":
        super().__init__(message)
        self.status_code = status_code
        self.pages_processed: "int" = 0
        self.records_added: "int" = 0


class UpstreamUnauthorizedError(UpstreamError):
    pass


class UpstreamForbiddenError(UpstreamError):
    pass


class UpstreamTransientError(UpstreamError):
    pass


class RateLimitedError(UpstreamTransientError):
    pass
