from typing import Any, Optional
from fastapi.responses import JSONResponse
from app.schemas.CommonResponse import ApiResponse


def api_error(status_code: int, message: str, data: Optional[Any] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ApiResponse(
            success=False,
            statusCode=status_code,
            message=message,
            data=data
        ).model_dump(mode="json")
    )
