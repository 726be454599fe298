from mobipay.models.account import Account
from mobipay.models.vehicle import Vehicle
from mobipay.models.transaction import Transaction
from mobipay.models.system_setting import SystemSetting

__all__ = ["Account", "Vehicle", "Transaction", "SystemSetting"]
