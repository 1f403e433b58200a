"""パイプラインのエラー分類.

致命的なエラーはすべて LifecycleCoordinator まで伝播し、
そこでティアダウンと終了コードが決定される。
音声ソースのフォールバックはエラーではなく warning ログとして扱う。
"""

from dataclasses import dataclass


class ConfigError(ValueError):
    """必須設定が欠けている（リソース確保前に報告）."""


class BrowserSetupError(RuntimeError):
    """ブラウザ起動またはページ遷移に失敗した."""


class StartError(RuntimeError):
    """FFmpeg プロセスの起動に失敗した（自動リトライしない）."""


@dataclass(frozen=True)
class EncoderExit:
    """FFmpeg 終了通知.

    Attributes:
        returncode: 終了コード (spawn 失敗時は None)
        error: spawn 時の例外 (正常に起動した場合は None)
    """

    returncode: int | None = None
    error: BaseException | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None or self.returncode != 0

    def describe(self) -> str:
        if self.error is not None:
            return f"spawn error: {self.error}"
        return f"exit code {self.returncode}"
