"""Certomat configuration file loader built on ConfigKit.

The gateway runs from command-line flags alone; a config file is
optional and supplies the less common knobs (agent paths, timeouts,
logging format).  CLI flags always win over file values.

Usage (the CLI does this when ``-c`` is given)::

    cfg = CertomatConfig(config_file="/etc/certomat/config.yaml", schema_file="bundled")
    data = cfg.apply_overrides({"domain": "example.com"})
    settings = build_settings(data)
"""

from __future__ import annotations

import logging
from pathlib import Path

from configkit import ConfigKit, ConfigKitMeta

from certomat.config.validation import (
    ConfigValidationError,
    merge_overrides,
    resolve_env_vars,
    validate_data,
)

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

log = logging.getLogger(__name__)


class CertomatConfig(ConfigKit):
    """Configuration file for the certomat gateway.

    Subclasses :class:`configkit.ConfigKit`.  The JSON schema is bundled
    at ``config/schema.json``; users supply only ``config_file``.

    Parameters
    ----------
    config_file:
        Path to the YAML/JSON configuration file.
    schema_file:
        Ignored.  Exists only to satisfy the
        :class:`ConfigKitMeta` singleton guard.

    """

    def __init__(
        self,
        *,
        config_file: str | Path,
        schema_file: str | Path | None = None,  # noqa: ARG002
    ) -> None:
        super().__init__(
            config_file=config_file,
            schema_file=_SCHEMA_PATH,
        )

    # -- lifecycle overrides ------------------------------------------------

    def _load(self) -> None:
        """Load config file then resolve ``${VAR}`` env-var references.

        Runs before schema validation so that substituted values are
        checked against the schema's enum constraints.
        """
        super()._load()
        resolve_env_vars(self._data)

    # -- CLI flags ----------------------------------------------------------

    def apply_overrides(self, overrides: dict) -> dict:
        """Return the file data with CLI flag values merged over it.

        ``None`` entries in *overrides* are ignored; the file data itself
        is left untouched.

        Raises
        ------
        ConfigValidationError
            If the merged data fails the cross-field checks.

        """
        merged = merge_overrides(dict(self.data), overrides)
        errors = validate_data(merged)
        if errors:
            raise ConfigValidationError(errors)
        return merged

    # -- cross-field validation ---------------------------------------------

    def additional_checks(self) -> None:
        """Semantic & cross-field validation of the file contents.

        Called automatically by ConfigKit **after** schema validation
        passes.
        """
        errors = validate_data(self.data)
        if errors:
            raise ConfigValidationError(errors)

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton -- testing only."""
        ConfigKitMeta.reset()

    def __repr__(self) -> str:
        """Return a developer-friendly representation."""
        source = self.data.get("_source", "?")
        return f"<CertomatConfig config_file={source}>"
