import os
import tomllib
from pathlib import Path
from typing import Literal

from loguru import logger
from pydantic import Field, ValidationError

from modelvault.shared.constants import MODELVAULT_CONFIG_FILE
from modelvault.shared.types.models import ModelId, ModelSignature
from modelvault.utils.pydantic_ext import SettingsModel


class FeedbackSettings(SettingsModel):
    update_threshold: int = Field(default=20, ge=1)
    update_interval_secs: float = Field(default=3600.0, gt=0)
    target_model: ModelId = ModelId.TextGenerator


class IntegritySettings(SettingsModel):
    sweep_interval_secs: float = Field(default=3600.0, gt=0)
    approved_signatures: dict[ModelId, list[ModelSignature]] = Field(
        default_factory=dict
    )


class PredictionSettings(SettingsModel):
    max_context_tokens: int = Field(default=500, ge=1)
    history_limit: int = Field(default=5, ge=0)
    inference_workers: int = Field(default=2, ge=1)


class AcquisitionSettings(SettingsModel):
    base_url: str | None = None
    offline: bool = False
    retry_attempts: int = Field(default=3, ge=1)
    backoff_base_secs: float = Field(default=0.5, gt=0)
    backoff_cap_secs: float = Field(default=300.0, gt=0)


class ModelVaultSettings(SettingsModel):
    engine: Literal["retrieval", "dummy"] = "retrieval"
    essential_models: list[ModelId] = Field(
        default_factory=lambda: [ModelId.IntentClassifier]
    )
    feedback: FeedbackSettings = Field(default_factory=FeedbackSettings)
    integrity: IntegritySettings = Field(default_factory=IntegritySettings)
    prediction: PredictionSettings = Field(default_factory=PredictionSettings)
    acquisition: AcquisitionSettings = Field(default_factory=AcquisitionSettings)


_cached_settings: ModelVaultSettings | None = None
_cached_key: tuple[Path, float] | None = None


def _apply_env_overrides(settings: ModelVaultSettings) -> ModelVaultSettings:
    env_engine = os.environ.get("MODELVAULT_ENGINE")
    if env_engine in ("retrieval", "dummy"):
        settings = settings.model_copy(update={"engine": env_engine})
    elif env_engine is not None:
        logger.warning(f"Ignoring unknown MODELVAULT_ENGINE={env_engine!r}")
    env_offline = os.environ.get("MODELVAULT_OFFLINE")
    if env_offline is not None:
        settings = settings.model_copy(
            update={
                "acquisition": settings.acquisition.model_copy(
                    update={"offline": env_offline.lower() in ("1", "true", "yes")}
                )
            }
        )
    env_base_url = os.environ.get("MODELVAULT_BASE_URL")
    if env_base_url is not None:
        settings = settings.model_copy(
            update={
                "acquisition": settings.acquisition.model_copy(
                    update={"base_url": env_base_url or None}
                )
            }
        )
    env_threshold = os.environ.get("MODELVAULT_UPDATE_THRESHOLD")
    if env_threshold is not None:
        try:
            threshold = max(1, int(env_threshold))
        except ValueError:
            logger.warning(f"Ignoring invalid MODELVAULT_UPDATE_THRESHOLD={env_threshold!r}")
        else:
            settings = settings.model_copy(
                update={
                    "feedback": settings.feedback.model_copy(
                        update={"update_threshold": threshold}
                    )
                }
            )
    return settings


def load_settings(config_file: Path = MODELVAULT_CONFIG_FILE) -> ModelVaultSettings:
    global _cached_settings, _cached_key  # noqa: PLW0603

    try:
        key = (config_file, config_file.stat().st_mtime)
        if _cached_settings is not None and key == _cached_key:
            return _apply_env_overrides(_cached_settings)
        with open(config_file, "rb") as f:
            data = tomllib.load(f)
        settings = ModelVaultSettings.model_validate(data)
        _cached_key = key
    except FileNotFoundError:
        settings = ModelVaultSettings()
        _cached_key = None
    except (tomllib.TOMLDecodeError, ValidationError) as e:
        logger.warning(f"Invalid config file {config_file}: {e}")
        settings = ModelVaultSettings()
        _cached_key = None

    _cached_settings = settings
    # Env vars override the config file
    return _apply_env_overrides(settings)
