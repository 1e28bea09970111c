import asyncio
from datetime import datetime, timezone
import time

from dotenv import load_dotenv
import hydra
from hydra.utils import instantiate
from loguru import logger
from omegaconf import DictConfig

from topoevo.evolution.engine import ControllerConfig, GenerationController
from topoevo.telemetry.tensorboard import TensorBoardSink
from topoevo.utils.logger_setup import setup_logger
from topoevo.utils.serve import abort_on_signal


async def run_experiment(cfg: DictConfig) -> None:
    start_time = time.time()

    logger.info("Starting TopoEvo run | problem={}", cfg.problem.name)
    logger.info("Start time: {}", datetime.now(timezone.utc).isoformat())

    evaluator = instantiate(cfg.evaluator)
    probe = instantiate(cfg.probe) if cfg.get("probe") else None
    core = instantiate(cfg.core, evaluator=evaluator, _convert_="all")
    config: ControllerConfig = instantiate(cfg.controller, _convert_="all")

    sinks: list[TensorBoardSink] = []
    if cfg.telemetry.tensorboard_dir:
        sinks.append(TensorBoardSink(cfg.telemetry.tensorboard_dir))

    controller = GenerationController(
        core, config, evaluator=evaluator, probe=probe, sinks=sinks
    )
    logger.info(
        "Configuration | popsize={}, max_generations={}, target_fitness={}",
        len(core.population),
        config.max_generations or "unlimited",
        config.target_fitness,
    )

    try:
        with abort_on_signal(controller.abort):
            result = await controller.run()
        logger.info(
            "Run finished | reason={}, generations={}, best_fitness={}",
            result.reason.value,
            result.generations,
            result.best_fitness,
        )
        if result.best_genome is not None:
            logger.info("Best genome: {}", result.best_genome)
    except Exception as e:  # pylint: disable=broad-except
        logger.error("Run failed: {}", e)
        raise
    finally:
        for sink in sinks:
            sink.close()
        export_path = cfg.telemetry.export_path
        if export_path:
            try:
                logger.info("Telemetry written to {}", controller.telemetry.write(export_path))
            except Exception as exc:  # pylint: disable=broad-except
                logger.warning("Telemetry export failed: {}", exc)
        duration = time.time() - start_time
        logger.info("Total run duration: {:.2f} seconds", duration)


@hydra.main(version_base=None, config_path="config", config_name="config")
def main(cfg: DictConfig) -> None:
    """Main entrypoint with Hydra configuration management."""
    load_dotenv()

    log_file_path = setup_logger(
        log_dir=cfg.logging.log_dir,
        level=cfg.logging.level,
        rotation=cfg.logging.rotation,
        retention=cfg.logging.retention,
    )
    logger.info(
        "Experiment working directory: {}.",
        hydra.core.hydra_config.HydraConfig.get().runtime.output_dir,
    )
    logger.info("Log file: {}", log_file_path)
    asyncio.run(run_experiment(cfg))


if __name__ == "__main__":
    main()
