"""SQL writer for prices, metering points and meter readings.

Every write is an upsert on the row's natural key and commits on its own,
so re-running a cycle after a partial failure overwrites rather than
duplicates.
"""

import logging
from datetime import datetime, timezone
from typing import Iterable, Optional, Union

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    MetaData,
    String,
    Table,
    create_engine,
    text,
)
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.engine import URL, Engine
from sqlalchemy.exc import SQLAlchemyError

from .config import DatabaseConfig
from .errors import DatabaseConnectError, PersistenceError
from .models import MeteringPoint, MeterReading, NorlysPricingResult, PriceRecord

logger = logging.getLogger("lighthouse.database")

metadata = MetaData()

price_data = Table(
    "priceData",
    metadata,
    Column("priceDate", DateTime, primary_key=True),
    Column("sector", String(8), primary_key=True),
    Column("currency", String(8)),
    Column("hour", DateTime, primary_key=True),
    Column("price", Float),
)

metering_point = Table(
    "meteringPoint",
    metadata,
    Column("meteringPointId", String(32), primary_key=True),
    Column("streetCode", String(16)),
    Column("streetName", String(128)),
    Column("buildingNumber", String(16)),
    Column("floorId", String(16)),
    Column("roomId", String(16)),
    Column("citySubDivisionName", String(128)),
    Column("municipalityCode", String(16)),
    Column("locationDescription", String(256)),
    Column("settlementMethod", String(16)),
    Column("meterReadingOccurrence", String(16)),
    Column("firstConsumerPartyName", String(128)),
    Column("secondConsumerPartyName", String(128)),
    Column("meterNumber", String(32)),
    Column("consumerStartDate", DateTime),
    Column("typeOfMp", String(8)),
    Column("balanceSupplierName", String(128)),
    Column("postcode", String(16)),
    Column("cityName", String(128)),
    Column("hasRelation", Boolean),
)

metering_time_series = Table(
    "meteringPointsTimeSeries",
    metadata,
    Column("meteringPointId", String(32), primary_key=True),
    Column("measurementUnit", String(16)),
    Column("businessType", String(16)),
    Column("hour", DateTime, primary_key=True),
    Column("quantity", Float),
    Column("quality", String(8)),
)


def to_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to naive UTC, the form all timestamps are stored in."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def build_url(config: DatabaseConfig) -> URL:
    if config.driver.startswith("sqlite"):
        return URL.create(config.driver, database=config.name)
    return URL.create(
        config.driver,
        username=config.username,
        password=config.password,
        host=config.host_name,
        port=config.port,
        database=config.name,
    )


class Database:
    """Writes collected data to the SQL database."""

    def __init__(self, url: Union[str, URL]):
        self.url = url
        self.engine: Optional[Engine] = None

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> "Database":
        return cls(build_url(config))

    def connect(self):
        """Open the connection pool, check it works and create missing tables.

        Raises:
            DatabaseConnectError: if the database can't be reached
        """
        try:
            self.engine = create_engine(self.url, pool_pre_ping=True)
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            metadata.create_all(self.engine)
        except (SQLAlchemyError, ImportError) as e:
            raise DatabaseConnectError(f"error connecting to database: {e}")

        logger.info(f"Connected to {self.engine.dialect.name} database")

    def close(self):
        """Dispose of the connection pool."""
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    def _upsert(self, table: Table, row: dict):
        """Insert ``row``, replacing any row with the same primary key."""
        if self.engine is None:
            raise PersistenceError("database is not connected")

        key_columns = [c.name for c in table.primary_key.columns]
        update_columns = [name for name in row if name not in key_columns]
        dialect = self.engine.dialect.name

        if dialect in ("mysql", "mariadb"):
            stmt = mysql.insert(table).values(**row)
            stmt = stmt.on_duplicate_key_update({name: stmt.inserted[name] for name in update_columns})
        elif dialect == "postgresql":
            stmt = postgresql.insert(table).values(**row)
            stmt = stmt.on_conflict_do_update(
                index_elements=key_columns,
                set_={name: stmt.excluded[name] for name in update_columns},
            )
        elif dialect == "sqlite":
            stmt = sqlite.insert(table).values(**row)
            stmt = stmt.on_conflict_do_update(
                index_elements=key_columns,
                set_={name: stmt.excluded[name] for name in update_columns},
            )
        else:
            raise PersistenceError(f"upsert not supported for {dialect} databases")

        try:
            with self.engine.begin() as conn:
                conn.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"error writing to {table.name}: {e}")

    # =========================================================================
    # Prices
    # =========================================================================

    def save_price_record(self, record: PriceRecord):
        self._upsert(price_data, {
            "priceDate": to_utc(record.price_date),
            "sector": record.sector,
            "currency": record.currency,
            "hour": to_utc(record.hour),
            "price": record.price,
        })

    def save_pricing_result(self, result: NorlysPricingResult) -> int:
        """Write one row per hour of a Norlys price day. Returns rows written."""
        records = result.records()
        for record in records:
            self.save_price_record(record)
        logger.debug(f"Wrote {len(records)} {result.sector} prices for {result.price_date.date()}")
        return len(records)

    # =========================================================================
    # Eloverblik
    # =========================================================================

    def save_metering_points(self, points: Iterable[MeteringPoint]) -> int:
        count = 0
        for mp in points:
            self._upsert(metering_point, {
                "meteringPointId": mp.metering_point_id,
                "streetCode": mp.street_code,
                "streetName": mp.street_name,
                "buildingNumber": mp.building_number,
                "floorId": mp.floor_id,
                "roomId": mp.room_id,
                "citySubDivisionName": mp.city_sub_division_name,
                "municipalityCode": mp.municipality_code,
                "locationDescription": mp.location_description,
                "settlementMethod": mp.settlement_method,
                "meterReadingOccurrence": mp.meter_reading_occurrence,
                "firstConsumerPartyName": mp.first_consumer_party_name,
                "secondConsumerPartyName": mp.second_consumer_party_name,
                "meterNumber": mp.meter_number,
                "consumerStartDate": to_utc(mp.consumer_start_date),
                "typeOfMp": mp.type_of_mp,
                "balanceSupplierName": mp.balance_supplier_name,
                "postcode": mp.postcode,
                "cityName": mp.city_name,
                "hasRelation": mp.has_relation,
            })
            count += 1
        return count

    def save_meter_readings(self, readings: Iterable[MeterReading]) -> int:
        count = 0
        for reading in readings:
            self._upsert(metering_time_series, {
                "meteringPointId": reading.metering_point_id,
                "measurementUnit": reading.measurement_unit,
                "businessType": reading.business_type,
                "hour": to_utc(reading.hour),
                "quantity": reading.quantity,
                "quality": reading.quality,
            })
            count += 1
        return count
