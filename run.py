import asyncio
import sys

from mergewise.config import SettingsError, get_settings
from mergewise.logger import get_logger
from mergewise.worker.loop import Worker

logger = get_logger()


def main() -> None:
    try:
        settings = get_settings()
    except SettingsError as exc:
        logger.critical(f"Worker configuration is invalid: {exc}")
        sys.exit(1)

    logger.info(
        "Starting Mergewise worker (jobs={job_file}, delivery={delivery})",
        job_file=settings.job_file_path,
        delivery=settings.delivery_mode.value,
    )

    try:
        asyncio.run(Worker(settings).run_forever())
    except KeyboardInterrupt:
        logger.info("Mergewise worker stopped")


if __name__ == "__main__":
    main()
