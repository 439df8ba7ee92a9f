class AppError(Exception):
    """Base error rendered as a JSON body by the app's error handler."""

    status_code = 500
    error_type = 'AppError'

    def __init__(self, message, status_code=None, details=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.details = details

    def to_dict(self):
        body = {'error': self.message, 'error_type': self.error_type}
        if self.details is not None:
            body['details'] = self.details
        return body


class Unauthorized(AppError):
    status_code = 401
    error_type = 'Unauthorized'

    def __init__(self, message='Unauthorized', **kwargs):
        super().__init__(message, **kwargs)


class Forbidden(AppError):
    status_code = 403
    error_type = 'Forbidden'


class NotFound(AppError):
    status_code = 404
    error_type = 'NotFound'


class ValidationError(AppError):
    status_code = 400
    error_type = 'ValidationError'


class Conflict(AppError):
    status_code = 409
    error_type = 'Conflict'


class UploadError(AppError):
    error_type = 'UploadError'

    def __init__(self, message, response_status=None, response_text=None, **kwargs):
        super().__init__(message, **kwargs)
        self.response_status = response_status
        self.response_text = response_text


class MintError(AppError):
    error_type = 'MintError'


class PersistenceError(AppError):
    error_type = 'PersistenceError'


class ConfigurationError(AppError):
    error_type = 'ConfigurationError'

    def __init__(self, missing):
        # Setting names only; values never leave the server
        super().__init__('Server configuration error')
        self.missing = list(missing)
