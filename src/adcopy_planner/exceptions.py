"""
Exception types for adcopy_planner.

The API layer maps each family to an HTTP status; services raise them and
never retry.
"""

from __future__ import annotations


class AdCopyError(Exception):
    """Base exception for all adcopy_planner errors."""

    def __init__(self, message: str, error_code: str = "ADCOPY_ERROR"):
        self.message = message
        self.error_code = error_code
        super().__init__(self.message)


class ConfigurationError(AdCopyError):
    """Raised when a required credential or setting is missing."""

    def __init__(self, setting_name: str):
        message = f"{setting_name} is not set"
        super().__init__(message, error_code="CONFIG_MISSING")
        self.setting_name = setting_name


class UpstreamAPIError(AdCopyError):
    """Raised when an LLM endpoint answers with an error or cannot be reached."""

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        super().__init__(f"{provider} API error: {message}", error_code="UPSTREAM_ERROR")
        self.provider = provider
        self.status_code = status_code


class InvalidInputError(AdCopyError):
    """Raised when a request payload cannot be used."""

    def __init__(self, message: str):
        super().__init__(message, error_code="INVALID_INPUT")


class NotFoundError(AdCopyError):
    """Base for missing records."""

    def __init__(self, kind: str, record_id: str):
        super().__init__(f"{kind} '{record_id}' not found", error_code="NOT_FOUND")
        self.record_id = record_id


class AdvertiserNotFoundError(NotFoundError):
    def __init__(self, advertiser_id: str):
        super().__init__("Advertiser", advertiser_id)


class PlanNotFoundError(NotFoundError):
    def __init__(self, plan_id: str):
        super().__init__("Plan", plan_id)


class TemplateNotFoundError(NotFoundError):
    def __init__(self, template_id: str):
        super().__init__("Template", template_id)


class HistoryEntryNotFoundError(NotFoundError):
    def __init__(self, entry_id: str):
        super().__init__("History entry", entry_id)
