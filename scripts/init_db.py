import logging
from finder.db.session import ENGINE, current_engine_url
from finder.db.models import Base

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

def main():
    logger.info("Creating tables on %s", current_engine_url())
    Base.metadata.create_all(bind=ENGINE)
    logger.info("Tables ready: %s", ", ".join(sorted(Base.metadata.tables)))

if __name__ == "__main__":
    main()
