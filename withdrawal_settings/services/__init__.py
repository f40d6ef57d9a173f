"""
Services.

Business logic layer.
"""

from withdrawal_settings.services.dirty_tracker import DirtyTracker
from withdrawal_settings.services.settings_controller import (
    SaveResult,
    SettingsController,
    create_settings_controller,
    get_settings_controller,
    init_settings_controller,
)
from withdrawal_settings.services.wms_client import WMSClient

__all__ = [
    "DirtyTracker",
    "SaveResult",
    "SettingsController",
    "WMSClient",
    "create_settings_controller",
    "get_settings_controller",
    "init_settings_controller",
]
