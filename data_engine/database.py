"""
Database persistence for depth samples and alerts.
"""

import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import BigInteger, String, Float, Text, inspect, text

from config import settings
from data_engine.models import AlertRecord, DepthSample

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when the database cannot be initialised."""
    pass


# SQLAlchemy models
class Base(DeclarativeBase):
    pass


class DepthLogModel(Base):
    """One depth sample per successful order book iteration."""
    __tablename__ = "depth_logs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    exchange: Mapped[str] = mapped_column(String(50), index=True)
    symbol: Mapped[str] = mapped_column(String(50), index=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, index=True)

    bid_depth_value: Mapped[float] = mapped_column(Float)
    ask_depth_value: Mapped[float] = mapped_column(Float)
    mid_price: Mapped[float] = mapped_column(Float)
    bid_quantity: Mapped[float] = mapped_column(Float)
    ask_quantity: Mapped[float] = mapped_column(Float)


class AlertModel(Base):
    """Alerts that fired."""
    __tablename__ = "alerts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    exchange: Mapped[str] = mapped_column(String(50), index=True)
    symbol: Mapped[str] = mapped_column(String(50), index=True)
    timestamp: Mapped[int] = mapped_column(BigInteger, index=True)
    message: Mapped[str] = mapped_column(Text)


# Added after the first release; older depth_logs tables lack them
DEPTH_LOG_UPGRADE_COLUMNS = ("mid_price", "bid_quantity", "ask_quantity")


def _upgrade_depth_logs(sync_conn):
    existing = {column["name"] for column in inspect(sync_conn).get_columns("depth_logs")}
    for column in DEPTH_LOG_UPGRADE_COLUMNS:
        if column not in existing:
            sync_conn.execute(text(f"ALTER TABLE depth_logs ADD COLUMN {column} REAL"))
            logger.info(f"Added column depth_logs.{column}")


class DatabaseManager:
    """
    Manages asynchronous database connections and writes.

    Writes are best-effort: a failed insert is logged and never reaches the
    calling watcher.
    """

    def __init__(self, url: str = None):
        self.url = url or settings.database_url
        self.engine = create_async_engine(self.url, echo=False)
        self.session_factory = async_sessionmaker(
            self.engine, expire_on_commit=False, class_=AsyncSession
        )
        self._is_active = False

    async def __aenter__(self):
        try:
            await self.connect()
        except PersistenceError:
            await self.engine.dispose()
            raise
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()

    async def connect(self):
        """
        Test connection and create tables.

        Raises:
            PersistenceError: If the database cannot be reached or migrated
        """
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
                await conn.run_sync(_upgrade_depth_logs)
        except Exception as e:
            self._is_active = False
            raise PersistenceError(f"Database initialisation failed for {self.url}: {e}") from e
        self._is_active = True
        logger.info("Database initialised")

    async def disconnect(self):
        """Close database engine."""
        await self.engine.dispose()
        self._is_active = False

    async def record_depth(self, sample: DepthSample):
        """Store a depth sample."""
        await self._insert(DepthLogModel(**sample.model_dump()), sample.exchange, sample.symbol, "depth sample")

    async def record_alert(self, record: AlertRecord):
        """Store an alert."""
        await self._insert(AlertModel(**record.model_dump()), record.exchange, record.symbol, "alert")

    async def _insert(self, row: Base, exchange: str, symbol: str, what: str):
        if not self._is_active:
            logger.debug(f"[{exchange}] {symbol}: database inactive, dropping {what}")
            return

        try:
            async with self.session_factory() as session:
                async with session.begin():
                    session.add(row)
        except Exception as e:
            logger.error(f"[{exchange}] {symbol}: failed to store {what}: {e}")
