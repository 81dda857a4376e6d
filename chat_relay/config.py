"""Configuration management for the chat relay."""

import os
from typing import Any

import yaml
from dotenv import load_dotenv

from chat_relay.llm.models import ModelOption, ProviderConfig, ProviderType

# Provider name -> environment variable holding its API key
PROVIDER_KEY_MAP = {
    "openai": "OPENAI_API_KEY",
    "groq": "GROQ_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
}

DEFAULT_MODEL_ENV = "OPENROUTER_DEFAULT_MODEL"
APP_URL_ENV = "APP_URL"


class Configuration:
    """Manages configuration and environment variables for the relay."""

    def __init__(self) -> None:
        """Initialize configuration from YAML and environment variables."""
        self.load_env()  # Load .env for API keys
        self._config = self._load_yaml_config()

    @staticmethod
    def load_env() -> None:
        """Load environment variables from .env file."""
        load_dotenv()

    def _load_yaml_config(self) -> dict[str, Any]:
        """Load configuration from YAML file."""
        config_path = os.getenv(
            "CHAT_RELAY_CONFIG",
            os.path.join(os.path.dirname(__file__), "config.yaml"),
        )
        with open(config_path) as file:
            config = yaml.safe_load(file)
            if not isinstance(config, dict):
                raise ValueError(
                    f"Config file must be YAML dict, got {type(config)}"
                )
            return config

    @property
    def active_provider(self) -> str:
        return self._config.get("llm", {}).get("active", "openrouter")

    def optional_api_key(self) -> str | None:
        """Get the API key, or None when it is not configured."""
        return os.getenv(self._api_key_env()) or None

    def _api_key_env(self) -> str:
        env_key = PROVIDER_KEY_MAP.get(self.active_provider)
        if not env_key:
            raise ValueError(
                f"Unknown provider '{self.active_provider}' - no API key "
                "mapping found"
            )
        return env_key

    def get_config_dict(self) -> dict[str, Any]:
        """Get the full configuration dictionary."""
        return self._config

    def get_llm_config(self) -> dict[str, Any]:
        """Get active LLM provider configuration from YAML.

        Returns:
            Active LLM provider configuration dictionary.

        Raises:
            ValueError: If the active provider or a required key is missing.
        """
        llm_config = self._config.get("llm", {})
        providers = llm_config.get("providers", {})

        if self.active_provider not in providers:
            raise ValueError(
                f"Active provider '{self.active_provider}' not found in "
                "providers config"
            )

        provider_config = providers[self.active_provider]
        for key in ["base_url", "default_model"]:
            if key not in provider_config:
                raise ValueError(
                    f"llm.providers.{self.active_provider}.{key} must be "
                    "explicitly configured in config.yaml"
                )

        return provider_config

    @property
    def default_model(self) -> str:
        """Default model id; the environment overrides YAML."""
        return os.getenv(DEFAULT_MODEL_ENV) or self.get_llm_config()["default_model"]

    @property
    def app_url(self) -> str | None:
        return os.getenv(APP_URL_ENV) or self.get_llm_config().get("app_url")

    def get_http_client_config(self) -> dict[str, float]:
        """Get HTTP client timeouts for the active LLM provider.

        Raises:
            ValueError: If a required timeout is missing or not positive.
        """
        http_config = self.get_llm_config().get("http_client", {})

        required_keys = [
            "connect_timeout", "read_timeout", "write_timeout", "pool_timeout"
        ]
        for key in required_keys:
            if key not in http_config:
                raise ValueError(
                    f"http_client.{key} must be explicitly configured "
                    f"for provider '{self.active_provider}' in config.yaml"
                )
            if http_config[key] <= 0:
                raise ValueError(f"http_client.{key} must be positive")

        return {key: float(http_config[key]) for key in required_keys}

    def get_models(self) -> list[ModelOption]:
        """Get the catalogue of selectable models.

        Raises:
            ValueError: If an entry lacks an id or name.
        """
        models = []
        for entry in self._config.get("llm", {}).get("models", []) or []:
            if "id" not in entry or "name" not in entry:
                raise ValueError(
                    "Every entry under llm.models must have an 'id' and a 'name'"
                )
            models.append(ModelOption(
                id=entry["id"],
                name=entry["name"],
                provider=entry.get("provider", ""),
                description=entry.get("description", ""),
            ))
        return models

    def get_provider_config(self) -> ProviderConfig:
        """Build the typed provider configuration used by the upstream client."""
        llm_config = self.get_llm_config()
        http_config = self.get_http_client_config()
        return ProviderConfig(
            provider=ProviderType.detect(llm_config["base_url"]),
            base_url=llm_config["base_url"],
            default_model=self.default_model,
            api_key=self.optional_api_key(),
            app_name=llm_config.get("app_title"),
            app_url=self.app_url,
            models=self.get_models(),
            **http_config,
        )

    def get_streaming_config(self) -> dict[str, Any]:
        """Get streaming configuration from YAML.

        Raises:
            ValueError: If fragment_delay is negative.
        """
        streaming_config = {**self._config.get("streaming", {})}
        delay = streaming_config.setdefault("fragment_delay", 0.0)
        if not isinstance(delay, int | float) or delay < 0:
            raise ValueError("streaming.fragment_delay must be a non-negative number")
        return streaming_config

    def get_server_config(self) -> dict[str, Any]:
        """Get HTTP server configuration from YAML.

        Raises:
            ValueError: If host or port is missing or the port is invalid.
        """
        server_config = self._config.get("server", {})
        for key in ["host", "port"]:
            if key not in server_config:
                raise ValueError(
                    f"server.{key} must be explicitly configured in config.yaml"
                )
        port = server_config["port"]
        if not isinstance(port, int) or not 0 < port < 65536:
            raise ValueError("server.port must be an integer between 1 and 65535")
        return server_config

    def get_logging_config(self) -> dict[str, Any]:
        """Get logging configuration from YAML."""
        return self._config.get("logging", {})
