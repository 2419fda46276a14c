"""Run the FieldSync API with uvicorn."""

import uvicorn

from fieldsync.config import settings

if __name__ == "__main__":
    uvicorn.run("fieldsync.main:app", host=settings.app_host, port=settings.app_port)
