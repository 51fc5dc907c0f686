class EllaRisesError(Exception):
    status_code = 500

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(EllaRisesError):
    """Bad input. Raised before anything is written."""
    status_code = 400


class NotFoundError(EllaRisesError):
    status_code = 404


class AuthorizationError(EllaRisesError):
    status_code = 403


class PersistenceError(EllaRisesError):
    """A database statement failed and the transaction was rolled back."""
    status_code = 500
