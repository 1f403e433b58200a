"""app.main エントリポイントのテスト."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.main import main, run
from page_caster.config import CasterConfig


def test_main_missing_env_exits_nonzero(monkeypatch):
    """必須環境変数がなければリソースを確保せずに非ゼロ終了."""
    monkeypatch.delenv("WEB_URL", raising=False)
    monkeypatch.delenv("RTMP_URL", raising=False)

    with patch("app.main.LifecycleCoordinator") as coordinator_cls:
        assert main() == 1
    coordinator_cls.assert_not_called()


def test_main_returns_coordinator_exit_code(monkeypatch):
    monkeypatch.setenv("WEB_URL", "https://example.com")
    monkeypatch.setenv("RTMP_URL", "rtmp://live.example.com/app/key")

    with patch("app.main.run", new_callable=AsyncMock, return_value=0) as run_mock:
        assert main() == 0

    config = run_mock.await_args.args[0]
    assert isinstance(config, CasterConfig)
    assert config.page_url == "https://example.com"


@pytest.mark.asyncio
async def test_run_installs_signal_handlers():
    config = CasterConfig(page_url="https://example.com", destination_url="rtmp://x/y")
    coordinator = MagicMock()
    coordinator.run = AsyncMock(return_value=0)

    with patch("app.main.LifecycleCoordinator", return_value=coordinator) as cls:
        assert await run(config) == 0

    cls.assert_called_once_with(config)
    coordinator.install_signal_handlers.assert_called_once_with()
    coordinator.run.assert_awaited_once()
