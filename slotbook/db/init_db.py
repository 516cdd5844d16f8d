import psycopg2
from psycopg2.extensions import ISOLATION_LEVEL_AUTOCOMMIT
from sqlalchemy.engine import make_url
from slotbook.core.config import settings
import logging

logger = logging.getLogger(__name__)

def create_database(database_url: str = None):
    """Create the Postgres database named in the connection URL if it doesn't exist."""
    url = make_url(database_url or settings.DATABASE_URL)
    if url.get_backend_name() != "postgresql":
        logger.info("Skipping database bootstrap for %s URL.", url.get_backend_name())
        return

    try:
        # The target DB may not exist yet, so check from the maintenance database
        con = psycopg2.connect(
            user=url.username,
            password=url.password,
            host=url.host,
            port=url.port or 5432,
            dbname="postgres"
        )
        con.set_isolation_level(ISOLATION_LEVEL_AUTOCOMMIT)
        cur = con.cursor()

        cur.execute("SELECT 1 FROM pg_catalog.pg_database WHERE datname = %s", (url.database,))
        if cur.fetchone():
            logger.info("Database %s already exists.", url.database)
        else:
            logger.info("Database %s does not exist. Creating...", url.database)
            cur.execute(f'CREATE DATABASE "{url.database}"')
            logger.info("Database %s created successfully.", url.database)

        cur.close()
        con.close()
    except psycopg2.Error as e:
        # Managed servers often forbid the maintenance database; tables are still created afterwards
        logger.error("Error creating database %s: %s", url.database, e)

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    create_database()
