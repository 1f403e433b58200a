"""X11 ディスプレイ関連ユーティリティ.

Xvfb 本体はコンテナの entrypoint が起動する前提。
ここではキャプチャ対象の指定と到達確認のみ行う。
"""

import subprocess


def capture_surface(display: str) -> str:
    """x11grab の入力指定を返す.

    Args:
        display: X11 ディスプレイ (例: ":99" または ":99.0")

    Returns:
        スクリーン番号付きのディスプレイ (例: ":99.0")
    """
    _, _, screen_part = display.rpartition(":")
    if "." in screen_part:
        return display
    return f"{display}.0"


def check_display(display: str) -> bool:
    """X11 ディスプレイが利用可能か確認する.

    Args:
        display: チェックするディスプレイ

    Returns:
        ディスプレイが利用可能なら True
    """
    try:
        result = subprocess.run(
            ["xdpyinfo", "-display", display],
            capture_output=True,
            timeout=5,
        )
        return result.returncode == 0
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return False
