import argparse
import signal
from pathlib import Path
from typing import Literal, Self

import anyio
from loguru import logger

from modelvault.service import ModelService
from modelvault.shared.constants import (
    MODELVAULT_BUNDLE_DIR,
    MODELVAULT_CONFIG_FILE,
    MODELVAULT_FEEDBACK_FILE,
    MODELVAULT_LOG,
    MODELVAULT_MODELS_DIR,
)
from modelvault.shared.errors import ModelVaultError
from modelvault.shared.logging import logger_cleanup, logger_setup
from modelvault.shared.types.models import ModelId
from modelvault.shared.types.settings import ModelVaultSettings, load_settings
from modelvault.utils.pydantic_ext import CamelCaseModel


async def _run(args: "Args", settings: ModelVaultSettings) -> int:
    service = ModelService.create(
        settings,
        models_dir=args.models_dir,
        bundle_dir=args.bundle_dir,
        feedback_file=MODELVAULT_FEEDBACK_FILE,
    )
    try:
        if args.check:
            await service.integrity.prime()
            results = await service.force_integrity_check()
            if not results:
                print("no installed models to check")
                return 1
            for model_id, trusted in results.items():
                print(f"{model_id}: {'ok' if trusted else 'FAILED'}")
            return 0 if all(results.values()) else 1

        if args.prompt is not None:
            await service.integrity.prime()
            try:
                print(await service.request_prediction(args.model, args.prompt))
            except ModelVaultError as e:
                logger.error(f"Prediction failed: {e}")
                return 1
            return 0

        signal.signal(signal.SIGINT, lambda _, __: service.shutdown())
        await service.run()
        return 0
    finally:
        service.close()


def main():
    args = Args.parse()

    logger_setup(MODELVAULT_LOG, args.verbosity)
    logger.info("Starting modelvault")

    settings = load_settings(args.config_file)
    if args.engine is not None:
        settings = settings.model_copy(update={"engine": args.engine})

    exit_code = anyio.run(_run, args, settings)
    logger.info("modelvault shutdown complete")
    logger_cleanup()
    raise SystemExit(exit_code)


class Args(CamelCaseModel):
    verbosity: int = 0
    config_file: Path = MODELVAULT_CONFIG_FILE
    models_dir: Path = MODELVAULT_MODELS_DIR
    bundle_dir: Path = MODELVAULT_BUNDLE_DIR
    engine: Literal["retrieval", "dummy"] | None = None
    check: bool = False
    prompt: str | None = None
    model: ModelId = ModelId.TextGenerator

    @classmethod
    def parse(cls, argv: list[str] | None = None) -> Self:
        parser = argparse.ArgumentParser(prog="modelvault")
        default_verbosity = 0
        parser.add_argument(
            "-q",
            "--quiet",
            action="store_const",
            const=-1,
            dest="verbosity",
            default=default_verbosity,
        )
        parser.add_argument(
            "-v",
            "--verbose",
            action="count",
            dest="verbosity",
            default=default_verbosity,
        )
        parser.add_argument(
            "--config",
            type=Path,
            dest="config_file",
            default=MODELVAULT_CONFIG_FILE,
        )
        parser.add_argument(
            "--models-dir",
            type=Path,
            dest="models_dir",
            default=MODELVAULT_MODELS_DIR,
        )
        parser.add_argument(
            "--bundle-dir",
            type=Path,
            dest="bundle_dir",
            default=MODELVAULT_BUNDLE_DIR,
        )
        parser.add_argument(
            "--engine",
            choices=["retrieval", "dummy"],
            dest="engine",
        )
        parser.add_argument(
            "--check",
            action="store_true",
            dest="check",
            help="Run one integrity sweep and exit",
        )
        parser.add_argument(
            "--prompt",
            dest="prompt",
            help="Run a single prediction and exit",
        )
        parser.add_argument(
            "--model",
            type=ModelId,
            choices=list(ModelId),
            dest="model",
            default=ModelId.TextGenerator,
        )

        args = parser.parse_args(argv)
        return cls(**vars(args))  # pyright: ignore[reportAny] - We are intentionally validating here, we can't do it statically
