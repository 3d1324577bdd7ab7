from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
import os


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore", frozen=True)

    app_env: str = Field(default="dev", validation_alias="APP_ENV")

    # DashScope (Qwen) native generation API
    dashscope_api_key: str | None = Field(default=None, validation_alias="DASHSCOPE_API_KEY")
    dashscope_text_url: str = Field(
        default="https://dashscope.aliyuncs.com/api/v1/services/aigc/text-generation/generation",
        validation_alias="DASHSCOPE_TEXT_URL",
    )
    dashscope_multimodal_url: str = Field(
        default="https://dashscope.aliyuncs.com/api/v1/services/aigc/multimodal-generation/generation",
        validation_alias="DASHSCOPE_MULTIMODAL_URL",
    )
    dashscope_text_model: str = Field(default="qwen-max", validation_alias="DASHSCOPE_TEXT_MODEL")
    dashscope_vision_model: str = Field(default="qwen-vl-max", validation_alias="DASHSCOPE_VISION_MODEL")
    dashscope_text_temperature: float = Field(default=0.2, validation_alias="DASHSCOPE_TEXT_TEMPERATURE")
    # Unset means no client-side timeout: one plain request/response, as long as the upstream takes.
    dashscope_timeout_seconds: float | None = Field(
        default=None, validation_alias="DASHSCOPE_TIMEOUT_SECONDS"
    )

    # Prompt file variant (essay_grading__<variant>.yaml); falls back to the base file.
    grading_prompt_variant: str | None = Field(default=None, validation_alias="GRADING_PROMPT_VARIANT")
    # Caller policy: reject requests with a blank topic instead of using the default title.
    require_topic: bool = Field(default=False, validation_alias="REQUIRE_TOPIC")

    log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
    allow_origins: list[str] = Field(default=["*"], validation_alias="ALLOW_ORIGINS")
    log_to_file: bool = Field(default=True, validation_alias="LOG_TO_FILE")
    log_file_path: str = Field(
        default=os.path.join("logs", "backend.log"),
        validation_alias="LOG_FILE_PATH",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
