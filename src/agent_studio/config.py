"""
运行时配置
"""
import os
import logging
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


@dataclass
class Settings:
    """从环境变量读取的运行时配置"""
    openai_api_key: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    nvidia_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"
    anthropic_base_url: str = "https://api.anthropic.com/v1"
    nvidia_base_url: str = "https://integrate.api.nvidia.com/v1"
    default_model: str = "gpt-4o-mini"
    embedding_model: str = "text-embedding-3-small"
    request_timeout: float = 60.0
    max_loop_iterations: int = 100
    log_level: str = "INFO"
    storage_path: str = ".agent_studio"

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> 'Settings':
        """加载 .env 后读取环境变量"""
        load_dotenv(dotenv_path)
        defaults = cls()

        return cls(
            openai_api_key=os.getenv("OPENAI_API_KEY") or None,
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY") or None,
            nvidia_api_key=os.getenv("NVIDIA_API_KEY") or None,
            openai_base_url=os.getenv("OPENAI_BASE_URL", defaults.openai_base_url),
            anthropic_base_url=os.getenv("ANTHROPIC_BASE_URL", defaults.anthropic_base_url),
            nvidia_base_url=os.getenv("NVIDIA_BASE_URL", defaults.nvidia_base_url),
            default_model=os.getenv("AGENT_STUDIO_DEFAULT_MODEL", defaults.default_model),
            embedding_model=os.getenv("AGENT_STUDIO_EMBEDDING_MODEL", defaults.embedding_model),
            request_timeout=float(os.getenv("AGENT_STUDIO_REQUEST_TIMEOUT", str(defaults.request_timeout))),
            max_loop_iterations=int(
                os.getenv("AGENT_STUDIO_MAX_LOOP_ITERATIONS", str(defaults.max_loop_iterations))
            ),
            log_level=os.getenv("AGENT_STUDIO_LOG_LEVEL", defaults.log_level).upper(),
            storage_path=os.getenv("AGENT_STUDIO_STORAGE_PATH", defaults.storage_path),
        )


def configure_logging(level: str = "INFO"):
    """配置日志"""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT
    )
