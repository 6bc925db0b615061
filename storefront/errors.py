"""Error taxonomy shared by the catalog, checkout and HTTP layers."""


class StorefrontError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ClientInputError(StorefrontError):
    status_code = 400


class NotFoundError(StorefrontError):
    status_code = 404


class ConflictError(StorefrontError):
    status_code = 409


class ServerError(StorefrontError):
    status_code = 500
