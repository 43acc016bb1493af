"""
Configuration management using Pydantic for validation and type safety.
"""

from pathlib import Path
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from flowpilot.models import BusinessDetails, CardDetails, Persona, TestGoals


class AppConfig(BaseModel):
    """Main application configuration."""
    name: str = "Onboarding Flow Pilot"
    version: str = "1.0.0"
    debug: bool = False
    log_level: str = "INFO"


class LLMConfig(BaseModel):
    """Language model configuration for the semantic and vision tiers."""
    enabled: bool = True
    provider: str = "openai"
    api_key: str = ""
    base_url: Optional[str] = None
    model: str = "gpt-4o-mini"
    vision_model: str = "gpt-4o"
    temperature: float = 0.1
    max_tokens: int = 600
    request_timeout: float = 45.0
    max_elements: int = 80


class CaptchaConfig(BaseModel):
    """CAPTCHA gate configuration."""
    service: str = "2captcha"
    api_key: str = ""
    timeout: float = 120.0
    poll_interval: float = 2.0
    retry_attempts: int = 3


class ViewportConfig(BaseModel):
    """Browser viewport configuration."""
    width: int = 1440
    height: int = 900


class BrowserConfig(BaseModel):
    """Browser session configuration."""
    browser: str = "chromium"
    headless: bool = False
    viewport: ViewportConfig = Field(default_factory=ViewportConfig)
    user_agent: str = ""
    navigation_timeout: int = 30000
    stealth: bool = True


class StuckThresholds(BaseModel):
    """No-progress thresholds, keyed by a location substring."""
    default: int = 5
    overrides: Dict[str, int] = Field(default_factory=lambda: {"checkout": 10, "/f/": 15})

    def for_location(self, location: str) -> int:
        """Return the threshold for a location. First matching override wins."""
        for pattern, threshold in self.overrides.items():
            if pattern in location:
                return threshold
        return self.default


class FlowConfig(BaseModel):
    """Flow driver configuration."""
    base_url: str = "https://www.dev.zenbusiness.com"
    max_steps: int = 50
    entry_action: str = 'Click the "Get started" button'
    stuck_thresholds: StuckThresholds = Field(default_factory=StuckThresholds)
    step_cache_path: str = "data/step_cache.json"
    use_step_cache: bool = True

    @field_validator("max_steps")
    @classmethod
    def validate_max_steps(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_steps must be at least 1")
        return v


class TimingConfig(BaseModel):
    """Wait times in milliseconds."""
    brief: int = 100
    short: int = 150
    medium: int = 300
    long: int = 500
    navigation: int = 500
    checkout: int = 1000
    payment: int = 2000


class ExecutorConfig(BaseModel):
    """Tiered action executor configuration."""
    max_retries: int = 3
    retry_backoff_ms: int = 300
    lookup_timeout_ms: int = 1000
    select_timeout_ms: int = 2000
    typing_delay_ms: int = 50


class PaymentConfig(BaseModel):
    """Payment filler configuration."""
    card: CardDetails = Field(default_factory=CardDetails)
    max_attempts: int = 3
    processing_grace_ms: int = 2000


class LoggingConfig(BaseModel):
    """Logging configuration."""
    directory: str = "./logs"
    file_name: str = "flow_{date}.log"
    rotation: str = "1 day"
    retention: str = "30 days"
    format: str = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


class ArtifactsConfig(BaseModel):
    """Where run directories with screenshots and results are written."""
    directory: str = "./test-results"
    screenshot_on_error: bool = True


class Config(BaseModel):
    """Root configuration."""
    app: AppConfig = Field(default_factory=AppConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    captcha: CaptchaConfig = Field(default_factory=CaptchaConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    flow: FlowConfig = Field(default_factory=FlowConfig)
    timing: TimingConfig = Field(default_factory=TimingConfig)
    executor: ExecutorConfig = Field(default_factory=ExecutorConfig)
    payment: PaymentConfig = Field(default_factory=PaymentConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    artifacts: ArtifactsConfig = Field(default_factory=ArtifactsConfig)
    persona: Persona
    business: BusinessDetails
    goals: TestGoals = Field(default_factory=TestGoals)


class EnvOverrides(BaseSettings):
    """Settings read from the environment or a local .env file."""
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_log_level: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_base_url: Optional[str] = None
    llm_model: Optional[str] = None
    llm_vision_model: Optional[str] = None
    twocaptcha_api_key: Optional[str] = None
    headless: Optional[bool] = None
    flow_base_url: Optional[str] = None


class ConfigLoader:
    """Configuration loader with environment variable support."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration loader."""
        if config_path is None:
            possible_paths = [
                Path("config/config.yaml"),
                Path("config.yaml"),
                Path(__file__).parent.parent / "config" / "config.yaml"
            ]

            for path in possible_paths:
                if path.exists():
                    config_path = str(path)
                    break

            if config_path is None:
                raise FileNotFoundError(
                    "Config file not found. Please create config/config.yaml from config/config.example.yaml"
                )

        self.config_path = Path(config_path)
        self._config: Optional[Config] = None

    def load(self) -> Config:
        """Load and validate configuration."""
        if self._config is not None:
            return self._config

        with open(self.config_path, 'r') as f:
            config_data = yaml.safe_load(f) or {}

        config_data = self._apply_env_overrides(config_data)

        self._config = Config(**config_data)
        return self._config

    def _apply_env_overrides(self, config_data: dict) -> dict:
        """Apply environment variable overrides to config.

        Environment variables take precedence over config file values so
        secrets never have to live in the YAML file.
        """
        env = EnvOverrides()

        if env.app_log_level:
            config_data.setdefault("app", {})["log_level"] = env.app_log_level

        if env.openai_api_key:
            config_data.setdefault("llm", {})["api_key"] = env.openai_api_key
        if env.openai_base_url:
            config_data.setdefault("llm", {})["base_url"] = env.openai_base_url
        if env.llm_model:
            config_data.setdefault("llm", {})["model"] = env.llm_model
        if env.llm_vision_model:
            config_data.setdefault("llm", {})["vision_model"] = env.llm_vision_model

        if env.twocaptcha_api_key:
            config_data.setdefault("captcha", {})["api_key"] = env.twocaptcha_api_key

        if env.headless is not None:
            config_data.setdefault("browser", {})["headless"] = env.headless

        if env.flow_base_url:
            config_data.setdefault("flow", {})["base_url"] = env.flow_base_url

        return config_data

    @property
    def config(self) -> Config:
        """Get loaded configuration."""
        if self._config is None:
            return self.load()
        return self._config


# Global config instance
_config_loader: Optional[ConfigLoader] = None


def get_config() -> Config:
    """Get global configuration instance."""
    global _config_loader
    if _config_loader is None:
        _config_loader = ConfigLoader()
    return _config_loader.config


def reload_config(config_path: Optional[str] = None) -> Config:
    """Reload configuration from file."""
    global _config_loader
    _config_loader = ConfigLoader(config_path)
    return _config_loader.load()
