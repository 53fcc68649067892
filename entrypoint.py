import uvicorn
from constants import HOST, LOG_FILE, LOG_LEVEL, PORT
from logging_config import setup_logging

# Setup logging before importing app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)

from logging_config import get_logger

logger = get_logger(__name__)

if __name__ == "__main__":
    logger.info(f"Starting Roomcast server on {HOST}:{PORT}")
    # Presence state is per process, so a single worker
    uvicorn.run("app:app", host=HOST, port=PORT, workers=1)
