"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field
from pydantic_settings import BaseSettings

DEFAULT_MODULES = [
    "alert",
    "calendar",
    "clock",
    "compliments",
    "currentweather",
    "helloworld",
    "newsfeed",
    "weatherforecast",
    "updatenotification",
]


class AuthConfig(BaseModel):
    """Control API auth configuration."""
    enabled: bool = False
    token: str = ""  # Bearer / X-Auth-Token value


class ServerConfig(BaseModel):
    """HTTP control surface configuration."""
    host: str = "0.0.0.0"
    port: int = 8090
    max_request_body_bytes: int = 2 * 1024 * 1024
    auth: AuthConfig = Field(default_factory=AuthConfig)


class ChannelConfig(BaseModel):
    """Notification channel to the mirror process."""
    adapter: str = "websocket"  # websocket | mock
    host: str = "127.0.0.1"
    port: int = 18792
    require_token: bool = False
    token: str = ""


class MirrorConfig(BaseModel):
    """Locations of the mirror installation and the files this service manages."""
    root: str = "~/MagicMirror"
    config_path: str = "config/config.js"  # relative to root
    extensions_dir: str = "modules"  # relative to root
    default_extensions_dir: str = "modules/default"  # relative to root
    backup_history_size: int = 5  # slots 1..N-1
    settings_path: str = "~/.mirror_remote/settings.json"
    modules_catalog_path: str = ""  # modules.json, empty = bundled with the service data dir
    translations_dir: str = ""
    template_path: str = ""
    default_modules: list[str] = Field(default_factory=lambda: list(DEFAULT_MODULES))
    mirror_repo_url: str = "https://github.com/MichMich/MagicMirror"

    @property
    def root_path(self) -> Path:
        return Path(self.root).expanduser()

    def resolve(self, value: str) -> Path:
        """Resolve a possibly relative path against the mirror root."""
        path = Path(value).expanduser()
        return path if path.is_absolute() else self.root_path / path


class WaiterConfig(BaseModel):
    """Deferred fresh-state wait configuration."""
    timeout_ms: int = 3000
    response_margin_ms: int = 2000  # extra time the HTTP thread waits on top of timeout_ms


class CommandsConfig(BaseModel):
    """Host commands executed by power/monitor/process actions."""
    shutdown: str = "sudo shutdown -h now"
    reboot: str = "sudo shutdown -r now"
    restart: str = "pm2 restart mm"
    monitor_on: str = "/opt/vc/bin/tvservice --preferred && sudo chvt 6 && sudo chvt 7"
    monitor_off: str = "/opt/vc/bin/tvservice -o"
    exec_timeout_seconds: float = 8.0
    install_command: str = "npm install"
    install_timeout_seconds: float = 120.0
    clone_timeout_seconds: float = 300.0


class Settings(BaseSettings):
    """Root configuration for mirror-remote."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    channel: ChannelConfig = Field(default_factory=ChannelConfig)
    mirror: MirrorConfig = Field(default_factory=MirrorConfig)
    waiter: WaiterConfig = Field(default_factory=WaiterConfig)
    commands: CommandsConfig = Field(default_factory=CommandsConfig)

    model_config = ConfigDict(
        env_prefix="MIRROR_REMOTE_",
        env_nested_delimiter="__"
    )
