"""Keep a conversation's visible input message in step with the shown response variant."""

from .config import ConfigManager, get_user_config_dir  # noqa: F401
from .logging import setup_logging  # noqa: F401
