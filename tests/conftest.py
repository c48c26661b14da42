"""测试初始化。"""

from __future__ import annotations

import sys
import warnings
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

# asyncio.run 与 pytest-asyncio 交替使用时偶发事件循环析构告警，统一忽略
warnings.filterwarnings(
    "ignore",
    category=ResourceWarning,
    message=r"unclosed event loop .*",
)
