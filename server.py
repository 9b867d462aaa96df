import uvicorn  # type: ignore

from app.core import config
from app.utils import get_logger, setup_logging

log = get_logger(__name__)

if __name__ == "__main__":
    setup_logging(config.LOG_LEVEL)
    log.info("Running server on %s:%d", config.HOST, config.PORT)
    uvicorn.run("app.main:app", reload=config.RELOAD, host=config.HOST, port=config.PORT)
