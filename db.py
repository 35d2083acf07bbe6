from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool
from config import settings  # Import is needed here

from utils.structured_logging import get_logger, LogCategory

logger = get_logger("database")

# Test-friendly engine: use SQLite when NODE_ENV=test
if settings.NODE_ENV == "test":
    test_db_url = settings.DATABASE_URL or "sqlite://"
    engine = create_engine(test_db_url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    # Auto-create tables for tests
    from models import Base  # Local import to avoid circular during prod startup

    Base.metadata.create_all(bind=engine)
else:
    engine = create_engine(
        settings.SQLALCHEMY_URL,
        poolclass=QueuePool,
        pool_size=10,  # Number of connections to maintain in the pool
        max_overflow=20,  # Additional connections beyond pool_size
        pool_pre_ping=True,  # Validate connections before use
        pool_recycle=3600,  # Recycle connections every hour
        pool_timeout=30,  # Timeout for getting connection from pool
        echo=False,
        connect_args={
            "connect_timeout": 10,
            "application_name": "learning_progress_api",
        },
    )

    @event.listens_for(engine, "connect")
    def set_postgresql_settings(dbapi_connection, connection_record):
        """Configure connection-level settings"""
        try:
            with dbapi_connection.cursor() as cursor:
                # Set statement timeout to prevent runaway analytics queries
                cursor.execute("SET statement_timeout = '30s'")
        except Exception as e:
            # Log but don't fail if PostgreSQL-specific settings can't be applied
            logger.warning(f"Could not apply PostgreSQL settings: {e}", category=LogCategory.DATABASE)

    @event.listens_for(engine, "checkout")
    def receive_checkout(dbapi_connection, connection_record, connection_proxy):
        """Log connection checkout for monitoring"""
        logger.debug(
            "Database connection checked out",
            category=LogCategory.DATABASE,
            extra={"pool_size": engine.pool.size(), "checked_out": engine.pool.checkedout()},
        )


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
