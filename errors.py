class BlogError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: str = None):
        super().__init__(message or self.message)
        if message:
            self.message = message


class ValidationError(BlogError):
    status_code = 400
    message = "Invalid request"


class NotFoundError(BlogError):
    status_code = 404
    message = "Not found"


class AuthError(BlogError):
    status_code = 401
    message = "Invalid credentials"


class StorageError(BlogError):
    status_code = 503
    message = "Storage unavailable"
