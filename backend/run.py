import logging
import os

import uvicorn

from photopipe.config import load_settings


def main() -> None:
    log_level = load_settings().log_level
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    host = os.getenv("PHOTOPIPE_HOST", "127.0.0.1")
    port = int(os.getenv("PHOTOPIPE_PORT", "8000"))
    uvicorn.run("photopipe.main:app", host=host, port=port, log_level=log_level.lower())


if __name__ == "__main__":
    main()
