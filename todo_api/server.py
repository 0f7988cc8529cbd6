import uvicorn

from todo_api.core.config import get_settings


def run():
    """Entry point of the ``todo-api`` console script."""
    settings = get_settings()
    uvicorn.run(
        "todo_api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
        timeout_graceful_shutdown=10,
    )


if __name__ == "__main__":
    run()
