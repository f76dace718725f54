"""Data models for Norlys and Eloverblik API responses."""

import logging
from datetime import datetime, timedelta
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger("lighthouse.models")


class ApiModel(BaseModel):
    """Base for provider payloads: camelCase aliases, unknown keys ignored."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)


# =============================================================================
# Norlys prices
# =============================================================================

class PriceRecord(BaseModel):
    """One hourly price, keyed by (price_date, sector, hour)."""

    price_date: datetime
    sector: str
    currency: str
    hour: datetime
    price: float


class NorlysDisplayPrice(ApiModel):
    time: str = Field(alias="Time")
    value: float = Field(alias="Value")


class NorlysPricingResult(ApiModel):
    """Prices for the day in PriceDate.

    Sector DK1 is west Denmark and DK2 is east Denmark.
    """

    price_date: datetime = Field(alias="PriceDate")
    sector: str = Field(alias="Sector")
    currency: str = Field(alias="Currency")
    display_prices: List[NorlysDisplayPrice] = Field(default_factory=list, alias="DisplayPrices")

    def records(self) -> List[PriceRecord]:
        """Expand into one PriceRecord per hour offset."""
        records = []
        for display_price in self.display_prices:
            try:
                offset = int(display_price.time)
            except ValueError:
                logger.debug(f"Skipping price with non-numeric hour offset: {display_price.time!r}")
                continue
            records.append(PriceRecord(
                price_date=self.price_date,
                sector=self.sector,
                currency=self.currency,
                hour=self.price_date + timedelta(hours=offset),
                price=display_price.value,
            ))
        return records


# =============================================================================
# Eloverblik
# =============================================================================

class TokenResult(ApiModel):
    """Response from /api/token."""

    result: str


class MeteringPoint(ApiModel):
    """Metering point details from /api/meteringpoints/meteringpoints."""

    street_code: Optional[str] = Field(default=None, alias="streetCode")
    street_name: Optional[str] = Field(default=None, alias="streetName")
    building_number: Optional[str] = Field(default=None, alias="buildingNumber")
    floor_id: Optional[str] = Field(default=None, alias="floorId")
    room_id: Optional[str] = Field(default=None, alias="roomId")
    city_sub_division_name: Optional[str] = Field(default=None, alias="citySubDivisionName")
    municipality_code: Optional[str] = Field(default=None, alias="municipalityCode")
    location_description: Optional[str] = Field(default=None, alias="locationDescription")
    settlement_method: Optional[str] = Field(default=None, alias="settlementMethod")
    meter_reading_occurrence: Optional[str] = Field(default=None, alias="meterReadingOccurrence")
    first_consumer_party_name: Optional[str] = Field(default=None, alias="firstConsumerPartyName")
    second_consumer_party_name: Optional[str] = Field(default=None, alias="secondConsumerPartyName")
    meter_number: Optional[str] = Field(default=None, alias="meterNumber")
    consumer_start_date: Optional[datetime] = Field(default=None, alias="consumerStartDate")
    metering_point_id: str = Field(alias="meteringPointId")
    type_of_mp: Optional[str] = Field(default=None, alias="typeOfMP")
    balance_supplier_name: Optional[str] = Field(default=None, alias="balanceSupplierName")
    postcode: Optional[str] = Field(default=None, alias="postcode")
    city_name: Optional[str] = Field(default=None, alias="cityName")
    has_relation: bool = Field(default=False, alias="hasRelation")
    consumer_cvr: Optional[str] = Field(default=None, alias="consumerCVR")
    data_access_cvr: Optional[str] = Field(default=None, alias="dataAccessCVR")
    child_metering_points: List[Any] = Field(default_factory=list, alias="childMeteringPoints")


class MeteringPointResult(ApiModel):
    result: List[MeteringPoint] = Field(default_factory=list)


class MeterReading(BaseModel):
    """One hourly reading, keyed by (metering_point_id, hour)."""

    metering_point_id: str
    measurement_unit: Optional[str] = None
    business_type: Optional[str] = None
    hour: datetime
    quantity: float
    quality: Optional[str] = None


class TimeInterval(ApiModel):
    start: datetime
    end: Optional[datetime] = None


class TimeSeriesPoint(ApiModel):
    position: str
    quantity: str = Field(alias="out_Quantity.quantity")
    quality: Optional[str] = Field(default=None, alias="out_Quantity.quality")


class TimeSeriesPeriod(ApiModel):
    resolution: Optional[str] = None
    time_interval: TimeInterval = Field(alias="timeInterval")
    points: List[TimeSeriesPoint] = Field(default_factory=list, alias="Point")


class TimeSeries(ApiModel):
    mrid: str = Field(alias="mRID")
    business_type: Optional[str] = Field(default=None, alias="businessType")
    curve_type: Optional[str] = Field(default=None, alias="curveType")
    measurement_unit_name: Optional[str] = Field(default=None, alias="measurement_Unit.name")
    periods: List[TimeSeriesPeriod] = Field(default_factory=list, alias="Period")

    def readings(self) -> List[MeterReading]:
        """Flatten all periods into readings.

        Positions are 1-based hour offsets from the period start.
        """
        readings = []
        for period in self.periods:
            for point in period.points:
                readings.append(MeterReading(
                    metering_point_id=self.mrid,
                    measurement_unit=self.measurement_unit_name,
                    business_type=self.business_type,
                    # position 1 is the hour starting at the period start
                    hour=period.time_interval.start + timedelta(hours=int(point.position) - 1),
                    quantity=float(point.quantity),
                    quality=point.quality,
                ))
        return readings


class MarketDocument(ApiModel):
    mrid: Optional[str] = Field(default=None, alias="mRID")
    created_date_time: Optional[datetime] = Field(default=None, alias="createdDateTime")
    time_series: List[TimeSeries] = Field(default_factory=list, alias="TimeSeries")


class TimeSeriesDocumentResult(ApiModel):
    document: Optional[MarketDocument] = Field(default=None, alias="MyEnergyData_MarketDocument")
    success: bool = True
    error_code: Optional[int] = Field(default=None, alias="errorCode")
    error_text: Optional[str] = Field(default=None, alias="errorText")
    id: Optional[str] = None


class MeterReadingsResult(ApiModel):
    """Response from /api/meterdata/gettimeseries."""

    result: List[TimeSeriesDocumentResult] = Field(default_factory=list)

    def readings(self) -> List[MeterReading]:
        readings = []
        for entry in self.result:
            if not entry.success or entry.document is None:
                logger.warning(
                    f"Eloverblik returned no data for {entry.id}: "
                    f"error {entry.error_code} {entry.error_text}"
                )
                continue
            for series in entry.document.time_series:
                readings.extend(series.readings())
        return readings
