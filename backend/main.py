import uvicorn

from beergame.core.config import settings
from beergame.main import app  # noqa: F401

if __name__ == "__main__":
    uvicorn.run("beergame.main:app", host=settings.HOST, port=settings.PORT, reload=settings.DEBUG)
