class MarketplaceError(Exception):
    status_code = 500

    def __init__(self, message):
        super().__init__(message)
        self.message = message


class NotFound(MarketplaceError):
    status_code = 404


class PermissionDenied(MarketplaceError):
    status_code = 403


class InvalidRequest(MarketplaceError):
    status_code = 400


class ServiceUnavailable(MarketplaceError):
    status_code = 503
