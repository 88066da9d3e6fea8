import logging
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.exc import SQLAlchemyError

from .config import settings

# Set up logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL

logger.info(f"Using database URL: {DATABASE_URL.split('@')[-1]}")

Base = declarative_base()

try:
    if settings.is_sqlite():
        # SQLite is used for local development and single-node installs
        engine = create_engine(
            DATABASE_URL,
            connect_args={"check_same_thread": False, "timeout": 30},
            echo=False
        )
    else:
        engine = create_engine(
            DATABASE_URL,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_pre_ping=True,
            pool_recycle=1800,    # Recycle every 30 min
            echo=False
        )

    # Test connection
    with engine.connect() as connection:
        logger.info("Database connection successful!")

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

except SQLAlchemyError as e:
    logger.error(f"Database connection error: {e}")
    logger.error("Please check your database configuration in .env file")
    logger.error("The application will continue but database operations will fail")

    # Allow the app to start even if the DB is not available
    engine = None
    SessionLocal = None


# Dependency to get DB session
def get_db():
    if SessionLocal is None:
        raise SQLAlchemyError("Database connection not available")

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
