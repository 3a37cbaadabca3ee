from sellerdesk.models.order import Order
from sellerdesk.models.admin_account import AdminAccount
from sellerdesk.models.settings import MarketplaceSettings
from sellerdesk.models.platform_event import PlatformEvent
from sellerdesk.models.job_run import JobRun

__all__ = [
    "Order",
    "AdminAccount",
    "MarketplaceSettings",
    "PlatformEvent",
    "JobRun",
]
