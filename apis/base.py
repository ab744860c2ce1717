from typing import Any


def success_response(data: Any = None, message: str = "success", code: int = 0):
    return {
        "code": code,
        "message": message,
        "data": data,
    }
