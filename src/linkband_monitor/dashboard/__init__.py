"""
Web dashboard for the LinkBand monitor.
"""

from .app import MonitorDashboard, create_app

__all__ = ["MonitorDashboard", "create_app"]
