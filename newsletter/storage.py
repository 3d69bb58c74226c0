import logging
from typing import List

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import ArgumentError, IntegrityError, NoSuchModuleError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from newsletter.errors import ConfigError, ConflictError, StoreUnavailable

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()


def build_engine(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 5,
    pool_timeout: float = 30.0,
) -> Engine:
    """
    Create the pooled SQLAlchemy engine.

    Checkouts beyond pool_size + max_overflow block for up to pool_timeout
    seconds before failing. In-memory SQLite gets a single shared connection
    instead, since every new connection would open an empty database.

    Raises:
        ConfigError: unparseable URL, unknown dialect or missing driver
    """
    kwargs = {"echo": False, "pool_pre_ping": True}
    try:
        url = make_url(database_url)

        if url.get_backend_name() == "sqlite":
            # Connections are handed across FastAPI's threadpool workers
            kwargs["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                kwargs["poolclass"] = StaticPool
                return create_engine(url, **kwargs)

        kwargs.update(
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=pool_timeout,
        )
        return create_engine(url, **kwargs)
    except (ArgumentError, NoSuchModuleError, ImportError) as e:
        logger.error(f"Invalid DATABASE_URL: {e}")
        raise ConfigError("Invalid DATABASE_URL: unparseable URL, unknown dialect or missing driver") from e


class SubscriberStore:
    """
    Durable CRUD over subscribers.

    Uniqueness of email is enforced by the database constraint alone:
    inserts are attempted directly and a constraint violation becomes
    ConflictError. Nothing reads the table before an insert.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        # Rows stay readable after the session closes
        self.session_factory = sessionmaker(
            bind=engine, autoflush=False, expire_on_commit=False
        )

    @classmethod
    def from_settings(cls, settings) -> "SubscriberStore":
        engine = build_engine(
            settings.DATABASE_URL,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
        )
        return cls(engine)

    def ensure_schema(self) -> None:
        """
        Create the subscribers table if it does not exist.
        Safe to call on every start; never drops or alters anything.
        """
        from newsletter.models import Subscriber  # noqa: F401  registers the table

        logger.debug(f"Ensuring schema on {self.engine.url.render_as_string(hide_password=True)}")
        try:
            Base.metadata.create_all(bind=self.engine, checkfirst=True)
        except SQLAlchemyError as e:
            logger.error(f"Failed to initialize database: {e}")
            raise StoreUnavailable("Failed to initialize database") from e
        logger.info("Database schema ready")

    def insert(self, email: str):
        """
        Insert a new subscriber.

        Returns:
            The persisted Subscriber with id and created_at populated.

        Raises:
            ConflictError: email already exists
            StoreUnavailable: connection, pool or query failure
        """
        from newsletter.models import Subscriber

        logger.info(f"Inserting subscriber: {email}")
        with self.session_factory() as db:
            subscriber = Subscriber(email=email)
            db.add(subscriber)
            try:
                db.commit()
            except IntegrityError as e:
                db.rollback()
                logger.info(f"Duplicate subscriber rejected: {email}")
                raise ConflictError(f"Email already subscribed: {email}") from e
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to insert subscriber {email}: {e}")
                raise StoreUnavailable("Failed to insert subscriber") from e

        logger.info(f"Subscriber created: id={subscriber.id}")
        return subscriber

    def list_emails(self) -> List[str]:
        """Return every subscriber email ordered by id. Empty table gives []."""
        from newsletter.models import Subscriber

        try:
            with self.session_factory() as db:
                rows = db.query(Subscriber.email).order_by(Subscriber.id.asc()).all()
        except SQLAlchemyError as e:
            logger.error(f"Failed to list subscribers: {e}")
            raise StoreUnavailable("Failed to list subscribers") from e

        emails = [row.email for row in rows]
        logger.debug(f"Listed {len(emails)} subscribers")
        return emails

    def delete_by_email(self, email: str) -> bool:
        """
        Remove the subscriber with this exact email.

        Returns:
            True if a row was removed, False if nothing matched.
        """
        from newsletter.models import Subscriber

        logger.info(f"Deleting subscriber: {email}")
        with self.session_factory() as db:
            try:
                removed = (
                    db.query(Subscriber)
                    .filter(Subscriber.email == email)
                    .delete(synchronize_session=False)
                )
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error(f"Failed to delete subscriber {email}: {e}")
                raise StoreUnavailable("Failed to delete subscriber") from e

        logger.info(f"Delete result for {email}: {removed} row(s)")
        return removed > 0

    def check_health(self) -> bool:
        """
        Check if the database is reachable and the schema is applied.

        Returns:
            True if DB is healthy and the subscribers table exists, False otherwise.
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
                if not inspect(conn).has_table("subscribers"):
                    logger.error("Database schema not applied: 'subscribers' table not found")
                    return False
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False
        return True

    def dispose(self) -> None:
        """Close pooled connections."""
        self.engine.dispose()
        logger.info("Database pool disposed")
