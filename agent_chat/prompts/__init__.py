"""系统提示词加载工具。

智能体未配置 system_prompt 时，RequestBuilder 使用这里加载的
默认助手人设提示词，按语言(locale) 从 prompts/<locale> 目录读取。
"""

from functools import lru_cache
from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


@lru_cache(maxsize=None)
def load_system_prompt(locale: str = "zh") -> str:
    """加载默认系统提示词文本。

    未知语言回退到 zh 目录。
    """

    fname = PROMPTS_DIR / locale / "default_system.md"
    if not fname.exists():
        fname = PROMPTS_DIR / "zh" / "default_system.md"
    return fname.read_text(encoding="utf-8").strip()
