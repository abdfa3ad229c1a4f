"""
Import Feature Flags
Per-shop overrides for review import behaviour on top of environment defaults
"""
from typing import Dict, Any, Optional
import logging
from datetime import datetime
from dataclasses import dataclass

from settings import (
    ON_INVALID_RATING,
    IMPORT_ATOMIC_WRITES,
    normalize_rating_policy,
    sanitize_shop_id,
)

logger = logging.getLogger(__name__)


@dataclass
class FlagChange:
    """One recorded flag change"""
    key: str
    value: Any
    shop_id: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None


class FeatureFlagsManager:
    """Manages import flags with per-shop overrides"""

    def __init__(self):
        self.default_flags: Dict[str, Any] = {
            "import.on_invalid_rating": normalize_rating_policy(ON_INVALID_RATING),
            "import.atomic_writes": IMPORT_ATOMIC_WRITES,
            "import.resolve_products": True,
            "import.fallback_body": True,
        }
        self._flag_cache: Dict[str, Any] = self.default_flags.copy()
        self._shop_overrides: Dict[str, Dict[str, Any]] = {}
        self.change_history = []

    def get_flag(self, flag_key: str, shop_id: Optional[str] = None, default: Any = False) -> Any:
        """Get flag value with shop-specific overrides"""
        shop_id = sanitize_shop_id(shop_id)
        if shop_id and shop_id in self._shop_overrides:
            shop_flags = self._shop_overrides[shop_id]
            if flag_key in shop_flags:
                return shop_flags[flag_key]
        return self._flag_cache.get(flag_key, default)

    def get_all_flags(self, shop_id: Optional[str] = None) -> Dict[str, Any]:
        all_flags = self._flag_cache.copy()
        shop_id = sanitize_shop_id(shop_id)
        if shop_id and shop_id in self._shop_overrides:
            all_flags.update(self._shop_overrides[shop_id])
        return all_flags

    def set_flag(self, flag_key: str, value: Any, shop_id: Optional[str] = None,
                 updated_by: str = "system") -> bool:
        """Set a flag globally or for one shop. Unknown keys are rejected."""
        if flag_key not in self.default_flags:
            logger.warning(f"Invalid flag key: {flag_key}")
            return False
        if flag_key == "import.on_invalid_rating":
            value = normalize_rating_policy(value)

        shop_id = sanitize_shop_id(shop_id)
        if shop_id:
            self._shop_overrides.setdefault(shop_id, {})[flag_key] = value
        else:
            self._flag_cache[flag_key] = value

        self.change_history.append(FlagChange(
            key=flag_key,
            value=value,
            shop_id=shop_id,
            updated_at=datetime.now(),
            updated_by=updated_by,
        ))
        logger.info(f"Set flag {flag_key}={value} for shop={shop_id} by {updated_by}")
        return True

    def clear_shop_overrides(self, shop_id: Optional[str] = None) -> None:
        shop_id = sanitize_shop_id(shop_id)
        if shop_id:
            self._shop_overrides.pop(shop_id, None)
        else:
            self._shop_overrides.clear()

    def import_options(self, shop_id: Optional[str] = None) -> Dict[str, Any]:
        """Effective import options for one shop, keyed for the importer."""
        return {
            "on_invalid_rating": normalize_rating_policy(self.get_flag("import.on_invalid_rating", shop_id, "default")),
            "atomic_writes": bool(self.get_flag("import.atomic_writes", shop_id, True)),
            "resolve_products": bool(self.get_flag("import.resolve_products", shop_id, True)),
            "fallback_body": bool(self.get_flag("import.fallback_body", shop_id, True)),
        }


# Global feature flags manager
feature_flags = FeatureFlagsManager()
