"""ASGI entry point: ``uvicorn stepflow.main:app``."""

from .factory import create_app

app = create_app()


if __name__ == "__main__":
    import uvicorn
    from .config import get_config

    uvicorn.run(app, host=get_config().host, port=get_config().port)
