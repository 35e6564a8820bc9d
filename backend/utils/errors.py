class AppError(Exception):
    """
    Domain error carrying its HTTP status.
    Messages are bilingual: "English / Azerbaijani".
    """

    status_code = 500
    default_message = "Internal server error / Daxili server xətası"

    def __init__(self, message: str | None = None, details=None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    default_message = "Validation error / Validasiya xətası"


class UnauthorizedError(AppError):
    status_code = 401
    default_message = "Unauthorized / Yetkisiz"


class ForbiddenError(AppError):
    status_code = 403
    default_message = "Forbidden / Qadağandır"


class NotFoundError(AppError):
    status_code = 404
    default_message = "Resource not found / Resurs tapılmadı"


class ConflictError(AppError):
    status_code = 409
    default_message = "Resource already exists / Resurs artıq mövcuddur"


class RateLimitError(AppError):
    status_code = 429
    default_message = "Too many requests. Please try again later. / Çox sayda sorğu. Zəhmət olmasa sonra yenidən cəhd edin."
