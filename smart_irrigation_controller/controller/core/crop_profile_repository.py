# smart_irrigation_controller/controller/core/crop_profile_repository.py

from typing import Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from smart_irrigation_controller.controller.core.crop_profiles import (
    BUILTIN_CROP_PROFILES,
    DEFAULT_CROP,
    CropProfile,
)
from smart_irrigation_controller.controller.db.models import CropProfileRecord
from smart_irrigation_controller.controller.utils.logger import get_logger


class CropProfileRepository:
    """
    Crop profile lookup by name.

    Resolution order: database table -> built-in catalogue -> default parameters under the requested name.
    A database failure never blocks a decision; it degrades to the next source.
    """

    def __init__(self, engine: Optional[Engine]) -> None:
        self.logger = get_logger("CropProfileRepository")
        self.engine = engine

    def resolve(self, name: Optional[str]) -> CropProfile:
        crop_name = (name or DEFAULT_CROP).strip().lower() or DEFAULT_CROP

        stored = self.find(crop_name)
        if stored is not None:
            return stored

        builtin = BUILTIN_CROP_PROFILES.get(crop_name)
        if builtin is not None:
            return builtin

        self.logger.info(f"Unknown crop '{crop_name}', using default crop parameters.")
        return CropProfile().renamed(crop_name)

    def find(self, name: str) -> Optional[CropProfile]:
        """Database lookup only. Returns None when absent or when the database is unavailable."""
        if self.engine is None:
            return None
        try:
            with Session(self.engine) as session:
                record = session.exec(select(CropProfileRecord).where(CropProfileRecord.name == name)).first()
        except SQLAlchemyError as e:
            self.logger.warning(f"Crop profile lookup for '{name}' failed: {e}. Falling back to built-in profiles.")
            return None
        if record is None:
            return None
        return _record_to_profile(record)

    def upsert(self, profile: CropProfile, notes: Optional[str] = None) -> None:
        """
        Inserts or updates a crop profile.

        :raises ValueError: if the profile violates its physical constraints.
        """
        profile.validate()
        if self.engine is None:
            raise RuntimeError("CropProfileRepository has no database engine configured")
        with Session(self.engine) as session:
            record = session.exec(select(CropProfileRecord).where(CropProfileRecord.name == profile.name)).first()
            if record is None:
                record = CropProfileRecord(name=profile.name, kc=profile.kc)
            record.kc = profile.kc
            record.target_fraction = profile.target_fraction
            record.root_depth_cm = profile.root_depth_cm
            record.field_capacity_pct = profile.field_capacity_pct
            record.wilting_point_pct = profile.wilting_point_pct
            record.hysteresis_pct = profile.hysteresis_pct
            if notes is not None:
                record.notes = notes
            session.add(record)
            session.commit()

    def list_names(self) -> list[str]:
        names = set(BUILTIN_CROP_PROFILES)
        if self.engine is not None:
            try:
                with Session(self.engine) as session:
                    names.update(session.exec(select(CropProfileRecord.name)).all())
            except SQLAlchemyError as e:
                self.logger.warning(f"Listing crop profiles failed: {e}")
        return sorted(names)


def _record_to_profile(record: CropProfileRecord) -> CropProfile:
    return CropProfile(
        name=record.name,
        kc=record.kc,
        target_fraction=record.target_fraction,
        root_depth_cm=record.root_depth_cm,
        field_capacity_pct=record.field_capacity_pct,
        wilting_point_pct=record.wilting_point_pct,
        hysteresis_pct=record.hysteresis_pct,
    )
