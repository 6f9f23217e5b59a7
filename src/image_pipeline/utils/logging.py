"""运行日志配置。"""

from __future__ import annotations

import logging

from image_pipeline.core.log_recorder import DATE_FORMAT

LOG_FORMAT = "%(asctime)s [%(threadName)s] %(levelname)s %(name)s: %(message)s"


def setup_logging(level: int = logging.INFO) -> None:
    """初始化根日志记录器。

    任务在独立线程中运行，格式中带上线程名以区分不同任务的输出。
    """

    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=DATE_FORMAT)
