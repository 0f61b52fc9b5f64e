"""
Seeds the crop profile table with the built-in crop catalogue.

Runs with:
python -m smart_irrigation_controller.controller.db.seed_crops
"""

from typing import Optional

from smart_irrigation_controller.controller.core.crop_profile_repository import CropProfileRepository
from smart_irrigation_controller.controller.core.crop_profiles import BUILTIN_CROP_PROFILES
from smart_irrigation_controller.controller.db.session import build_engine
from smart_irrigation_controller.controller.utils.logger import get_logger


logger = get_logger("seed_crops")


def seed(repository: CropProfileRepository) -> int:
    """Upserts every built-in profile. Returns the number of profiles written."""
    count = 0
    for profile in BUILTIN_CROP_PROFILES.values():
        repository.upsert(profile)
        logger.info(f"Upserted crop profile '{profile.name}'.")
        count += 1
    return count


def main(database_url: Optional[str] = None) -> None:
    repository = CropProfileRepository(build_engine(database_url))
    count = seed(repository)
    print(f"Seeded {count} crop profiles.")


if __name__ == "__main__":
    main()
