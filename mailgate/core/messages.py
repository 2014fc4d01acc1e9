# mailgate/core/messages.py
"""
回應訊息目錄。

錯誤訊息皆為 ResponseMessage，除了 HTTP status 之外另帶一個 response_code，
讓前端可以精確辨識錯誤類型（對應 envelope 的 error_code）。
"""
from typing import Iterable, NamedTuple


class ResponseMessage(NamedTuple):
    response_code: int
    message: str


# === Error messages ===
def required_field(field: str) -> ResponseMessage:
    return ResponseMessage(2, f"{field} is required")


def resource_not_found(resource: str) -> ResponseMessage:
    return ResponseMessage(3, f"{resource} not found")


ERROR = ResponseMessage(4, "An error occurred")
DUPLICATE_EMAIL = ResponseMessage(5, "This email already exist, please try a different email")
DUPLICATE_PHONE = ResponseMessage(6, "This phone number already exist, please try a different phone number")
UNABLE_TO_SAVE = ResponseMessage(7, "Unable to save")
UNABLE_TO_COMPLETE_REQUEST = ResponseMessage(8, "Unable to complete request")


def invalid_request(reason: str) -> ResponseMessage:
    return ResponseMessage(9, f"Invalid request. {reason}")


INVALID_LOGIN = ResponseMessage(10, "Invalid email or password")
INVALID_TOKEN = ResponseMessage(11, "Unable to authenticate request. Please login to continue")


def action_not_permitted(action: str) -> ResponseMessage:
    return ResponseMessage(12, f"{action} is not permitted")


def duplicate_value(value: str) -> ResponseMessage:
    return ResponseMessage(13, f"a duplicate value for {value} already exists")


SESSION_EXPIRED = ResponseMessage(14, "Session expired. Please login again")
UNABLE_TO_LOGIN = ResponseMessage(15, "Unable to login")
INVALID_SESSION_USER = ResponseMessage(16, "Unauthenticated user session. Please login again")
PASSWORD_MISMATCH = ResponseMessage(17, "Passwords do not match")
PASSWORD_UPDATE_REQUIRED = ResponseMessage(18, "Password update is required for this account")
INVALID_PERMISSION = ResponseMessage(19, "Sorry you do not have permission to perform this action")


def invalid_value(field: str) -> ResponseMessage:
    return ResponseMessage(20, f"Invalid value provided for {field}")


INVALID_EMAIL = ResponseMessage(21, "Invalid email address")
FILE_NOT_FOUND = ResponseMessage(22, "File not found. Please attach a file to your request")


def invalid_file_type(file_types: Iterable[str]) -> ResponseMessage:
    return ResponseMessage(
        23,
        "You tried to upload an invalid file type, upload a " + ",".join(file_types) + " file instead",
    )


FILE_SIZE_LIMIT = ResponseMessage(24, "The size of this file is larger than the accepted limit")
FILE_UPLOAD_ERROR = ResponseMessage(25, "Error uploading file. Please try again")


def bad_request_error(message: str) -> ResponseMessage:
    return ResponseMessage(26, message)


MAX_FILE_COUNT_LIMIT = ResponseMessage(27, "You have exceeded the max number of files")
GMAIL_OAUTH_CONSENT_REQUIRED = ResponseMessage(28, "Please grant us the required access to continue")
TOO_MANY_LOGIN_ATTEMPTS = ResponseMessage(29, "Too many login attempts. Please try again later")


# === Success messages ===
SIGNUP_SUCCESS = "Sign up successful. Your account has been created"
LOGIN_SUCCESSFUL = "Logged in successfully"
LOGOUT_SUCCESSFUL = "Logged out successfully"
PASSWORD_UPDATE_SUCCESSFUL = "Your password has been updated successfully"
