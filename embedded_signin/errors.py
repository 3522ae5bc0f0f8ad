"""
Sign-in flow failures. Each carries a message safe to show the user and the HTTP status to answer with.
"""


class AuthFlowError(Exception):
    status_code = 400
    title = "Login error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RandomSourceError(AuthFlowError):
    """Platform entropy source unavailable; nothing secret can be generated."""

    status_code = 500
    title = "Server error"


class StateMismatchError(AuthFlowError):
    title = "Invalid state"


class MalformedCallbackError(AuthFlowError):
    pass


class InteractionError(AuthFlowError):
    status_code = 502
    title = "Sign-in unavailable"


class ExchangeError(AuthFlowError):
    title = "Token exchange failed"

    def __init__(self, code: str, description: str | None = None, status_code: int | None = None):
        super().__init__(description or code)
        self.code = code
        self.description = description
        if status_code is not None:
            self.status_code = status_code


class UpstreamTimeoutError(AuthFlowError):
    status_code = 504
    title = "Identity provider timed out"


class TokenVerificationError(AuthFlowError):
    status_code = 401
    title = "Authentication failed"

    def __init__(self, reason: str):
        super().__init__(f"ID token verification failed: {reason}")
        self.reason = reason
