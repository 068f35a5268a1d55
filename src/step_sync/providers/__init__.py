"""Health data providers.

Each provider implements the HealthDataProvider ABC for one platform source:

    AppleHealthExportProvider - Apple Health export.xml (source 'healthkit')
"""

from src.step_sync.providers.apple_health_export import AppleHealthExportProvider

__all__ = ["AppleHealthExportProvider"]
