"""
錯誤分類

每一種錯誤都帶有 HTTP status 和 error code,
由 app.py 的 error handler 統一轉成 JSON 回應
"""


class TaskManagerError(Exception):
    """所有應用程式錯誤的基底類別"""

    status_code = 500
    error = 'internal_server_error'

    def __init__(self, message=''):
        super().__init__(message)
        self.message = message

    def with_prefix(self, operation):
        """回傳同一類別、訊息前面加上操作名稱的新錯誤"""
        return self.__class__(f"{operation}: {self.message}")

    def __str__(self):
        return self.message


class ValidationFailed(TaskManagerError):
    """Payload did not pass the request rules."""
    status_code = 422
    error = 'validation_failed'

    def __init__(self, message='', details=None):
        super().__init__(message)
        self.details = details


class Unauthorized(TaskManagerError):
    status_code = 401
    error = 'unauthorized'


class InvalidCredentials(Unauthorized):
    error = 'invalid_credentials'


class MissingIdentity(Unauthorized):
    error = 'missing_identity'


class NotFound(TaskManagerError):
    status_code = 404
    error = 'not_found'


class InvalidUser(TaskManagerError):
    status_code = 400
    error = 'invalid_user'


class QueryError(TaskManagerError):
    """資料庫 I/O 失敗"""
    error = 'query_error'


class DuplicateKeyError(QueryError):
    error = 'duplicate_key'


class EncodingError(TaskManagerError):
    """Token 簽章或密碼雜湊失敗"""
    error = 'encoding_error'
