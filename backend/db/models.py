"""
AquaOps Database Models

Read-side tables of the farm-operations store. The analytics engine only
queries these; rows are written by the data-entry application.
Multi-tenant via farm_id on all tables.

Tables:
  Structure:
  1. systems                     - Production units (cage / pond / tank)
  2. batches                     - Fingerling batches
  3. batch_systems               - Batch <-> system membership

  Daily records:
  4. daily_fish_inventory        - One row per (system, date)
  5. production_summary          - One row per (system, date), period aggregates
  6. daily_water_quality_rating  - One ordinal rating per (system, date)
  7. water_quality_measurements  - Raw parameter readings

  Configuration / precomputed:
  8. alert_thresholds            - Per-farm water-quality thresholds
  9. dashboard_period_bounds     - Precomputed date bounds per named period
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    TypeDecorator,
    UniqueConstraint,
    types,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID


class GUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL UUID when available, stores as CHAR(36) on SQLite.
    """

    impl = types.String(36)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(types.String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value) if isinstance(value, uuid.UUID) else str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


from sqlalchemy.orm import relationship

from db.session import Base

# ─── 1. Systems ─────────────────────────────────────────────────────────────


class System(Base):
    __tablename__ = "systems"

    id = Column(Integer, primary_key=True, autoincrement=True)
    farm_id = Column(GUID(), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    growth_stage = Column(String(20), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("growth_stage IN ('nursing', 'grow_out')", name="ck_system_growth_stage"),
    )

    batch_links = relationship("BatchSystem", back_populates="system", cascade="all, delete-orphan")


# ─── 2. Batches ─────────────────────────────────────────────────────────────


class Batch(Base):
    __tablename__ = "batches"

    id = Column(Integer, primary_key=True, autoincrement=True)
    farm_id = Column(GUID(), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    date_of_delivery = Column(Date, nullable=True)

    system_links = relationship("BatchSystem", back_populates="batch", cascade="all, delete-orphan")


# ─── 3. Batch <-> System ────────────────────────────────────────────────────


class BatchSystem(Base):
    __tablename__ = "batch_systems"

    batch_id = Column(Integer, ForeignKey("batches.id"), primary_key=True)
    system_id = Column(Integer, ForeignKey("systems.id"), primary_key=True)

    batch = relationship("Batch", back_populates="system_links")
    system = relationship("System", back_populates="batch_links")


# ─── 4. Daily Fish Inventory ────────────────────────────────────────────────


class DailyFishInventory(Base):
    __tablename__ = "daily_fish_inventory"

    id = Column(Integer, primary_key=True, autoincrement=True)
    farm_id = Column(GUID(), nullable=False)
    system_id = Column(Integer, ForeignKey("systems.id"), nullable=False)
    inventory_date = Column(Date, nullable=False)
    number_of_fish = Column(Integer, nullable=True)
    number_of_fish_mortality = Column(Integer, nullable=True)
    mortality_rate = Column(Float, nullable=True)  # percent, precomputed upstream
    feeding_amount = Column(Float, nullable=True)  # kg
    feeding_rate = Column(Float, nullable=True)  # kg per tonne biomass
    biomass_last_sampling = Column(Float, nullable=True)  # kg
    biomass_density = Column(Float, nullable=True)  # kg/m3
    abw_last_sampling = Column(Float, nullable=True)  # g

    __table_args__ = (
        UniqueConstraint("system_id", "inventory_date", name="uq_inventory_system_date"),
        CheckConstraint("number_of_fish IS NULL OR number_of_fish >= 0", name="ck_inventory_fish_nonneg"),
        Index("ix_inventory_farm_date", "farm_id", "inventory_date"),
    )


# ─── 5. Production Summary ──────────────────────────────────────────────────


class ProductionSummary(Base):
    __tablename__ = "production_summary"

    id = Column(Integer, primary_key=True, autoincrement=True)
    farm_id = Column(GUID(), nullable=False)
    system_id = Column(Integer, ForeignKey("systems.id"), nullable=False)
    growth_stage = Column(String(20), nullable=True)
    date = Column(Date, nullable=False)
    efcr_period = Column(Float, nullable=True)
    total_feed_amount_period = Column(Float, nullable=True)
    biomass_increase_period = Column(Float, nullable=True)
    total_biomass = Column(Float, nullable=True)
    number_of_fish_inventory = Column(Integer, nullable=True)
    daily_mortality_count = Column(Integer, nullable=True)
    total_weight_transfer_out = Column(Float, nullable=True)
    total_weight_transfer_in = Column(Float, nullable=True)
    total_weight_harvested = Column(Float, nullable=True)
    total_weight_stocked = Column(Float, nullable=True)

    __table_args__ = (
        UniqueConstraint("system_id", "date", name="uq_production_system_date"),
        Index("ix_production_farm_date", "farm_id", "date"),
    )


# ─── 6. Daily Water Quality Rating ──────────────────────────────────────────


class DailyWaterQualityRating(Base):
    __tablename__ = "daily_water_quality_rating"

    id = Column(Integer, primary_key=True, autoincrement=True)
    farm_id = Column(GUID(), nullable=False)
    system_id = Column(Integer, ForeignKey("systems.id"), nullable=False)
    rating_date = Column(Date, nullable=False)
    rating = Column(String(20), nullable=True)
    rating_numeric = Column(Float, nullable=True)  # 0=lethal .. 3=optimal

    __table_args__ = (
        UniqueConstraint("system_id", "rating_date", name="uq_wq_rating_system_date"),
        Index("ix_wq_rating_farm_date", "farm_id", "rating_date"),
    )


# ─── 7. Water Quality Measurements ──────────────────────────────────────────


class WaterQualityMeasurement(Base):
    __tablename__ = "water_quality_measurements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    farm_id = Column(GUID(), nullable=False)
    system_id = Column(Integer, ForeignKey("systems.id"), nullable=False)
    date = Column(Date, nullable=False)
    parameter_name = Column(String(50), nullable=False)
    parameter_value = Column(Float, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "parameter_name IN ('dissolved_oxygen', 'pH', 'temperature', 'ammonia_ammonium', "
            "'nitrite', 'nitrate', 'salinity', 'secchi_disk_depth')",
            name="ck_wq_parameter_name",
        ),
        Index("ix_wq_measurement_farm_param_date", "farm_id", "parameter_name", "date"),
    )


# ─── 8. Alert Thresholds ────────────────────────────────────────────────────


class AlertThreshold(Base):
    __tablename__ = "alert_thresholds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    farm_id = Column(GUID(), nullable=False, unique=True)
    low_do_threshold = Column(Float, nullable=True)
    high_ammonia_threshold = Column(Float, nullable=True)
    high_temperature_threshold = Column(Float, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


# ─── 9. Dashboard Period Bounds ─────────────────────────────────────────────


class DashboardPeriodBounds(Base):
    """Precomputed [start, end] per named period, refreshed by the store."""

    __tablename__ = "dashboard_period_bounds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    farm_id = Column(GUID(), nullable=False)
    time_period = Column(String(20), nullable=False)
    input_start_date = Column(Date, nullable=True)
    input_end_date = Column(Date, nullable=True)

    __table_args__ = (UniqueConstraint("farm_id", "time_period", name="uq_period_bounds_farm_period"),)
