"""API error type rendered as `{"error": message}`."""

from fastapi import Request
from fastapi.responses import JSONResponse


class APIError(Exception):
    """Error returned to API clients with a status code."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def create_error_response(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
    return create_error_response(exc.message, exc.status_code)
