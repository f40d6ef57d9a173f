"""
Repositories.

Data access layer over the wallet management service.
"""

from withdrawal_settings.repositories.withdrawal_config_repository import (
    WithdrawalConfigRepository,
)

__all__ = ["WithdrawalConfigRepository"]
