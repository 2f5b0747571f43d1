"""
日志配置
"""
import sys
from pathlib import Path
from loguru import logger

from ..config.config import MonitorConfig


LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logger(config: MonitorConfig) -> None:
    """配置日志"""
    # 移除默认的日志处理器
    logger.remove()

    logger.add(
        sys.stdout,
        level=config.log_level,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        colorize=True
    )

    if not config.log_file:
        logger.info(f"Logger initialized with level: {config.log_level}")
        return

    logger.add(
        config.log_file,
        level=config.log_level,
        format=LOG_FORMAT,
        rotation=config.log_max_size,
        retention=config.log_backup_count,
        compression="zip",
        encoding="utf-8"
    )

    # 错误日志单独保存，保留更久
    error_log_file = Path(config.log_file).with_suffix('.error.log')
    logger.add(
        str(error_log_file),
        level="ERROR",
        format=LOG_FORMAT,
        rotation=config.log_max_size,
        retention=config.log_backup_count * 2,
        compression="zip",
        encoding="utf-8"
    )

    logger.info(f"Logger initialized with level: {config.log_level}")
