"""Configuration for the webhook server."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from elreview.platforms import Platform, PlatformConfig, RetryPolicy


class Settings(BaseSettings):
    """Server configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8080
    debug: bool = False
    webhook_path: str = "/webhook"
    admin_token: str = ""

    # GitHub
    github_token: str = ""
    github_api_url: str = ""
    github_webhook_secret: str = ""

    # GitLab
    gitlab_token: str = ""
    gitlab_api_url: str = ""
    gitlab_webhook_secret: str = ""

    # Bitbucket (no payload signing; secret unused on inbound)
    bitbucket_token: str = ""

    # Azure DevOps (no payload signing; authenticates outbound only)
    azure_devops_token: str = ""
    azure_devops_organization: str = ""
    azure_devops_api_url: str = ""

    # Connector settings
    request_timeout: float = 30.0
    max_retries: int = 0
    retry_backoff: float = 0.5

    # Review settings
    auto_review: bool = True
    auto_fix: bool = False
    apply_fixes: bool = True
    parallel_analysis: bool = True
    max_concurrent_analyses: int = 4
    max_files_per_review: int = 50
    max_lines_per_file: int = 1000
    security_enabled: bool = True
    performance_enabled: bool = True
    status_context: str = "elreview/code-review"

    # LLM settings
    llm_provider: str = "claude"
    llm_model: str = ""
    llm_api_url: str = ""
    llm_max_tokens: int = 2048
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # Logging
    log_level: str = "INFO"

    def llm_api_key(self) -> str:
        """API key for the configured LLM provider."""
        if self.llm_provider == "openai":
            return self.openai_api_key
        return self.anthropic_api_key

    def webhook_secret(self, platform: Platform) -> str | None:
        """Inbound webhook secret for a platform, if configured."""
        secrets = {
            Platform.GITHUB: self.github_webhook_secret,
            Platform.GITLAB: self.gitlab_webhook_secret,
        }
        return secrets.get(platform) or None

    def platform_configs(self) -> list[PlatformConfig]:
        """Connector configuration for every platform with a credential."""
        retry = RetryPolicy(
            max_attempts=self.max_retries + 1,
            backoff_base=self.retry_backoff,
        )
        candidates = [
            (Platform.GITHUB, self.github_token, self.github_api_url, None),
            (Platform.GITLAB, self.gitlab_token, self.gitlab_api_url, None),
            (Platform.BITBUCKET, self.bitbucket_token, "", None),
            (
                Platform.AZURE_DEVOPS,
                self.azure_devops_token,
                self.azure_devops_api_url,
                self.azure_devops_organization,
            ),
        ]
        return [
            PlatformConfig(
                platform=platform,
                token=token,
                api_url=api_url or None,
                organization=organization,
                timeout=self.request_timeout,
                retry=retry,
            )
            for platform, token, api_url, organization in candidates
            if token
        ]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
