"""
Verifier configuration.

Built once by the embedding process and handed to each component's
constructor; nothing in the package reads the environment on its own.
"""
import logging
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


class Settings(BaseSettings):
    """Verifier settings (environment prefix ``CV_``)."""

    model_config = SettingsConfigDict(
        env_prefix="CV_",
        env_file=".env",
        extra="ignore",
    )

    # Storage
    DB_PATH: str = "/files/contract_verifier/verifier.db"

    # Build directories (container-visible paths may differ when the
    # verifier itself runs in a container next to the docker daemon)
    SRC_DIR: str = "/tmp/contract_verifier/src"
    SRC_HOST_DIR: Optional[str] = None
    OUTPUT_DIR: str = "/tmp/contract_verifier/artifacts"
    OUTPUT_HOST_DIR: Optional[str] = None

    # Sandbox
    BUILD_TIMEOUT: int = 10  # seconds, enforced by `timeout` inside the container
    MEMORY_LIMIT: int = 2 * 1024 * 1024 * 1024
    CONTAINER_NAME: str = "go-compiler"
    SANDBOX_UID: int = 1000
    SANDBOX_GID: int = 1000
    FIX_PERMISSIONS: bool = True  # chown -R the cloned tree to SANDBOX_UID:GID

    # Repository host
    GITHUB_API_BASE: str = "https://api.github.com"
    GITHUB_CLONE_BASE: str = "https://github.com"
    GITHUB_API_KEY: Optional[str] = None
    MAX_REPO_SIZE_KB: int = 10240
    HTTP_TIMEOUT: float = 30.0

    # Strip tools
    WASM_STRIP: str = "wasm-strip"
    WASM_TOOLS: str = "wasm-tools"

    # Queue policy
    RESUBMIT_COOLDOWN_SECONDS: int = 3600
    NETWORK_BACKOFF_SECONDS: float = 600.0
    SHORT_BACKOFF_SECONDS: float = 60.0
    MAX_ATTEMPTS: Optional[int] = None
    REQUIRE_EXPORTS: bool = False

    # Logging
    LOG_LEVEL: str = "INFO"

    @property
    def src_mount(self) -> str:
        """Host path of the source directory as the docker daemon sees it."""
        return self.SRC_HOST_DIR or self.SRC_DIR

    @property
    def output_mount(self) -> str:
        """Host path of the output directory as the docker daemon sees it."""
        return self.OUTPUT_HOST_DIR or self.OUTPUT_DIR

    def ensure_dirs(self) -> None:
        """Create the output and database directories."""
        Path(self.OUTPUT_DIR).mkdir(parents=True, exist_ok=True)
        Path(self.DB_PATH).parent.mkdir(parents=True, exist_ok=True)


def configure_logging(level: str = "INFO") -> None:
    """Install the worker log format on the root logger."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
