class WhiteboardError(Exception):
    """Base error. `status_code` is what the HTTP layer answers with."""

    status_code = 500

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail or self.__class__.__name__


class ValidationError(WhiteboardError):
    status_code = 400


class InvalidRoomCode(ValidationError):
    def __init__(self, raw_code=None):
        super().__init__("Room code is required")
        self.raw_code = raw_code


class AuthError(WhiteboardError):
    status_code = 401


class NotFoundError(WhiteboardError):
    status_code = 404


class ConflictError(WhiteboardError):
    status_code = 409

    def __init__(self, detail: str = "", field: str = None):
        super().__init__(detail)
        self.field = field


class DuplicateCode(ConflictError):
    def __init__(self, code: str):
        super().__init__(f'Room code "{code}" is already taken, please retry', field="code")
        self.code = code


class StoreError(WhiteboardError):
    """Persistence engine failure (timeout, connection loss, rejected command)."""

    status_code = 503


class Exhausted(WhiteboardError):
    status_code = 503

    def __init__(self, attempts: int):
        super().__init__("Failed to generate unique room code")
        self.attempts = attempts
