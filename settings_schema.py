from pydantic import BaseModel, Field, ValidationError


class SettingsSchema(BaseModel):
    weight_unit: str = "kg"
    default_rest_time: int = Field(60, ge=0)
    autosave_interval: float = Field(30.0, gt=0)
    timer_warning_seconds: int = Field(10, ge=0)
    plateau_threshold: float = Field(0.05, ge=0)
    plateau_window: int = Field(4, ge=2)
    # 0 = Monday ... 6 = Sunday, as in datetime.date.weekday()
    week_start: int = Field(0, ge=0, le=6)
    personal_record_limit: int = Field(10, ge=1)
    recent_workout_limit: int = Field(5, ge=0)


def validate_settings(data: dict) -> SettingsSchema:
    try:
        return SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
