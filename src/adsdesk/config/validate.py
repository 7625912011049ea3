import logging
from typing import Any, Dict, Optional

import jsonschema

logger = logging.getLogger(__name__)


def validate_settings(cfg: Dict[str, Any], schema: Optional[Dict[str, Any]] = None) -> None:
    """
    Sanity-check a loaded settings mapping.

    - Requires a mapping at the top level and, when present, under ``meta``.
    - Validates against the JSON schema when one is supplied.
    - Warns when the request interval is below the Graph API pacing floor.
    """
    if not isinstance(cfg, dict):
        raise ValueError("Settings payload must be a dictionary.")

    meta_cfg = cfg.get("meta")
    if meta_cfg is not None and not isinstance(meta_cfg, dict):
        raise ValueError("Invalid `meta` configuration. Expected a mapping.")

    if schema:
        try:
            jsonschema.validate(instance=cfg, schema=schema)
        except jsonschema.ValidationError as exc:
            path = ".".join(str(p) for p in exc.absolute_path) or "<root>"
            raise ValueError(f"Invalid settings at {path}: {exc.message}") from exc

    interval = (meta_cfg or {}).get("request_interval")
    if isinstance(interval, (int, float)) and 0 <= interval < 0.2:
        logger.warning(
            "meta.request_interval=%.3fs is below 0.2s; "
            "expect more throttling from the Graph API.", interval
        )
