from typing import Literal, Optional

from pydantic import BaseModel, ValidationError


class SettingsSchema(BaseModel):
    weight_unit: Literal["kg", "lb"] = "kg"
    rpe_scale: int = 10
    strict_exercises: bool = False
    tabata_work_seconds: int = 20
    tabata_rest_seconds: int = 10
    log_level: Literal["TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_file: Optional[str] = None
    default_category: str = "STRENGTH"
    db_url: Optional[str] = None


def validate_settings(data: dict) -> None:
    try:
        SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
