from __future__ import annotations
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", "riptide.env"), env_file_encoding="utf-8", extra="ignore")

    # Server
    host: str = Field(default="127.0.0.1", alias="RIPTIDE_HOST")
    port: int = Field(default=8080, alias="RIPTIDE_PORT")
    env: str = Field(default="dev", alias="RIPTIDE_ENV")  # dev|prod
    mount_path: str = Field(default="/", alias="RIPTIDE_MOUNT_PATH")
    stream_heartbeat: float = Field(default=30.0, alias="RIPTIDE_STREAM_HEARTBEAT")
    stream_write_timeout: float = Field(default=30.0, alias="RIPTIDE_STREAM_WRITE_TIMEOUT")
    max_request_body: int = Field(default=1 << 20, alias="RIPTIDE_MAX_REQUEST_BODY")
    mask_internal_errors: bool = Field(default=False, alias="RIPTIDE_MASK_INTERNAL_ERRORS")

    # Generator defaults (CLI flags win)
    out_dir: str = Field(default="client/src/rpc", alias="RIPTIDE_OUT_DIR")
    strip_prefix: str = Field(default="", alias="RIPTIDE_STRIP_PREFIX")

    @property
    def probe_host(self) -> str:
        # 0.0.0.0 is a bind-all address, not a destination.
        return "127.0.0.1" if self.host in {"0.0.0.0", "::"} else self.host

    @property
    def base_url(self) -> str:
        path = "/" + self.mount_path.strip("/")
        return f"http://{self.probe_host}:{self.port}{path.rstrip('/')}"
