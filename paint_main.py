"""Run the Paint by Text server with uvicorn.

Reads runtime settings from environment variables (or a .env file) so
`python paint_main.py` respects container / user configuration.
"""
import os

from dotenv import load_dotenv

from paint_server import app


def env_bool(name, default=False):
    val = os.getenv(name)
    if val is None:
        return default
    return val.lower() in ("1", "true", "yes", "on")


def run():
    import uvicorn

    load_dotenv()
    host = os.getenv("HOST", "127.0.0.1")
    port = int(os.getenv("PORT", "3000"))
    log_level = os.getenv("LOG_LEVEL", "info")
    reload = env_bool("RELOAD", False)

    # reload needs an import string rather than the app object
    uvicorn.run("paint_server:app" if reload else app, host=host, port=port, log_level=log_level, reload=reload)


if __name__ == "__main__":
    run()
