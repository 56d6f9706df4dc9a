"""Import all models to register them with SQLAlchemy metadata."""
from commutewatch.models.base import Base
from commutewatch.models.route import Route
from commutewatch.models.monitoring_window import MonitoringWindow
from commutewatch.models.monitoring_session import MonitoringSession
from commutewatch.models.poll_record import PollRecord
from commutewatch.models.system_configuration import SystemConfiguration

__all__ = [
    "Base",
    "Route",
    "MonitoringWindow",
    "MonitoringSession",
    "PollRecord",
    "SystemConfiguration",
]
