import logging

from . import init_db
from .config import DATABASE_URL

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger("ticketproxy.init_db")

if __name__ == "__main__":
    init_db()
    logger.info("Tables created on %s", DATABASE_URL.split("@")[-1])
