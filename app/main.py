"""page-caster エントリポイント.

環境変数から設定を読み込み、パイプラインを起動して終了コードで exit する。
SIGINT / SIGTERM は graceful shutdown (終了コード 0)。
"""

import asyncio
import logging
import os
import sys

from page_caster.config import CasterConfig
from page_caster.errors import ConfigError
from page_caster.lifecycle import EXIT_FAILURE, LifecycleCoordinator

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """ログ設定 (LOG_LEVEL 環境変数、既定は INFO)."""
    level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        stream=sys.stdout,
    )


async def run(config: CasterConfig) -> int:
    """コーディネータを作成しシグナルハンドラを登録して実行する."""
    coordinator = LifecycleCoordinator(config)
    coordinator.install_signal_handlers()
    return await coordinator.run()


def main() -> int:
    configure_logging()
    try:
        config = CasterConfig.from_env()
    except ConfigError as e:
        logger.error("ConfigError: %s", e)
        return EXIT_FAILURE
    return asyncio.run(run(config))


if __name__ == "__main__":
    sys.exit(main())
