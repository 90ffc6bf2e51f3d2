"""Configuration subsystem for certomat.

Public API::

    from certomat.config import build_settings

    # Flags only:
    settings = build_settings({"domain": "example.com", "acme": {"prod": True}})

    # With a config file (CLI only; needs configkit):
    from certomat.config.certomat_config import CertomatConfig
    cfg = CertomatConfig(config_file="config.yaml", schema_file="bundled")
    data = cfg.apply_overrides({"domain": "example.com"})
"""

from certomat.config.settings import (
    PRODUCTION_DIRECTORY_URL,
    STAGING_DIRECTORY_URL,
    AcmeSettings,
    AgentSettings,
    CertomatSettings,
    IssuanceSettings,
    LoggingSettings,
    ServerSettings,
    build_settings,
)
from certomat.config.validation import (
    ConfigValidationError,
    merge_overrides,
    validate_data,
)

__all__ = [
    "PRODUCTION_DIRECTORY_URL",
    "STAGING_DIRECTORY_URL",
    "AcmeSettings",
    "AgentSettings",
    "CertomatSettings",
    "ConfigValidationError",
    "IssuanceSettings",
    "LoggingSettings",
    "ServerSettings",
    "build_settings",
    "merge_overrides",
    "validate_data",
]
