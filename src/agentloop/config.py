import logging
import os

from pydantic import BaseModel

from agentloop.approval import ApprovalMode

LOG_FORMAT = '%(asctime)s:%(name)s:%(levelname)s:%(message)s'
LOG_DATEFMT = '%Y-%m-%d %H:%M:%S'


class Settings(BaseModel):
    """Server and model settings.

    Build from the environment with :meth:`from_env`; every field can
    also be passed directly.
    """

    model: str = "gpt-4o-mini"
    api_key: str | None = None
    base_url: str | None = None
    host: str = "127.0.0.1"
    port: int = 8080
    log_level: str = "INFO"
    approval_mode: ApprovalMode = ApprovalMode.YOLO
    max_turns: int | None = None
    system_prompt: str | None = None

    @classmethod
    def from_env(cls) -> "Settings":
        values = {
            "model": os.getenv("AGENTLOOP_MODEL"),
            "api_key": os.getenv("AGENTLOOP_API_KEY") or os.getenv("OPENAI_API_KEY"),
            "base_url": os.getenv("AGENTLOOP_BASE_URL"),
            "host": os.getenv("AGENTLOOP_HOST"),
            "port": os.getenv("AGENTLOOP_PORT"),
            "log_level": os.getenv("AGENTLOOP_LOG_LEVEL"),
            "approval_mode": os.getenv("AGENTLOOP_APPROVAL_MODE"),
            "max_turns": os.getenv("AGENTLOOP_MAX_TURNS"),
            "system_prompt": os.getenv("AGENTLOOP_SYSTEM_PROMPT"),
        }
        return cls(**{k: v for k, v in values.items() if v})


def configure_logging(level: str = "INFO", log_file: str | None = None) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        handlers=handlers,
        force=True,
    )
