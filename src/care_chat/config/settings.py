"""Configuration settings using Pydantic."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..models import ChatConfig, ChatMode


class ServerSettings(BaseSettings):
    """WebSocket server configuration."""
    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = "0.0.0.0"
    port: int = 8765
    health_port: int = 8080


class StorageSettings(BaseSettings):
    """Storage backend configuration."""
    model_config = SettingsConfigDict(env_prefix="STORAGE_")

    backend: str = "local"  # local, supabase
    data_path: str = "./data"


class SupabaseSettings(BaseSettings):
    """Supabase configuration."""
    model_config = SettingsConfigDict(env_prefix="SUPABASE_")

    url: str = ""
    key: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.key)


class ChatSettings(BaseSettings):
    """Conversation engine defaults, overridable at runtime."""
    model_config = SettingsConfigDict(env_prefix="CHAT_")

    mode: ChatMode = ChatMode.HYBRID
    temperature: float = Field(default=0.7, ge=0.0, le=1.0)
    fallback_threshold: int = Field(default=2, ge=1)
    always_show_options: bool = False

    def to_config(self) -> ChatConfig:
        return ChatConfig(
            mode=self.mode,
            temperature=self.temperature,
            fallback_threshold=self.fallback_threshold,
        )


class AISettings(BaseSettings):
    """AI completion backend configuration."""
    model_config = SettingsConfigDict(env_prefix="AI_")

    function_name: str = "chat-gpt"
    max_tokens: int = 300


class ContactSettings(BaseSettings):
    """Representative contact channel configuration."""
    model_config = SettingsConfigDict(env_prefix="CONTACT_")

    whatsapp_number: str = "18687865357"
    contact_form_event: str = "tavara:open-contact-form"


class RegistrationSettings(BaseSettings):
    """Registration form handoff configuration."""
    model_config = SettingsConfigDict(env_prefix="REGISTRATION_")

    base_url: str = ""


class Settings(BaseSettings):
    """Main application settings."""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    log_level: str = "INFO"
    server: ServerSettings = Field(default_factory=ServerSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    supabase: SupabaseSettings = Field(default_factory=SupabaseSettings)
    chat: ChatSettings = Field(default_factory=ChatSettings)
    ai: AISettings = Field(default_factory=AISettings)
    contact: ContactSettings = Field(default_factory=ContactSettings)
    registration: RegistrationSettings = Field(default_factory=RegistrationSettings)
