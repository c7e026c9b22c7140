import logging
from pathlib import Path
from typing import Optional


def setup_logging(output_dir: Path, debug: bool = False, log_path: Optional[Path] = None) -> logging.Logger:
    """
    Setup logging configuration for VBT.

    Creates output directory and transcode.log file.
    Returns configured logger instance.

    Args:
        output_dir: Directory where transcoded files are written
        debug: If True, enable DEBUG level logging (dispatch and memory samples)
        log_path: Optional path to log file (overrides output_dir)
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    log_file = Path(log_path) if log_path else (output_dir / "transcode.log")
    log_file.parent.mkdir(parents=True, exist_ok=True)

    level = logging.DEBUG if debug else logging.INFO

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(threadName)s - %(message)s',
        handlers=[logging.FileHandler(log_file)],
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized: {log_file} (debug={'ON' if debug else 'OFF'})")

    return logger
