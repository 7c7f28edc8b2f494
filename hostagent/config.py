"""Global configuration — loaded from environment variables."""

from pathlib import Path

from pydantic_settings import BaseSettings


class AgentSettings(BaseSettings):
    # Controller
    server_url: str = "http://localhost:3000"
    region: str = "unknown"
    report_interval_seconds: float = 60.0
    request_timeout_seconds: float = 10.0
    metrics_sampler: str = "counter"  # counter|random

    # Command endpoint
    host: str = "0.0.0.0"
    port: int = 3001

    # Process capture
    history_limit: int = 1000
    pending_limit: int = 10_000
    line_limit: int = 1024 * 1024  # max bytes per captured line
    launcher: str = "shell"  # shell|python
    shell: str = "/bin/sh"
    python_executable: str = "python3"

    instance_id_file: Path = Path(".instance-id")
    log_level: str = "INFO"

    model_config = {"env_prefix": "HOSTAGENT_"}


settings = AgentSettings()
