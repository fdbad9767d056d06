from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from beergame.core.exceptions import (
    BeerGameError,
    GameNotActive,
    GameNotFound,
    GameNotReady,
    InvalidQuantity,
    RoleNotFound,
    RoleTaken,
    SettlementFailed,
    StorageError,
)

ERROR_STATUS = {
    GameNotFound: status.HTTP_404_NOT_FOUND,
    RoleNotFound: status.HTTP_404_NOT_FOUND,
    InvalidQuantity: 422,
    GameNotActive: status.HTTP_409_CONFLICT,
    GameNotReady: status.HTTP_409_CONFLICT,
    RoleTaken: status.HTTP_409_CONFLICT,
    SettlementFailed: status.HTTP_503_SERVICE_UNAVAILABLE,
    StorageError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: BeerGameError) -> int:
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


async def beer_game_error_handler(_: Request, exc: BeerGameError) -> JSONResponse:
    return JSONResponse(
        status_code=status_for(exc),
        content={"detail": str(exc), "error": type(exc).__name__},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BeerGameError, beer_game_error_handler)
