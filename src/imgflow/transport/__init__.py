"""Transport layer for the remote image processing service.

Public API
----------
.. autoclass:: ImageProcessorClient
.. autoclass:: TelemetrySnapshot
"""

from imgflow.transport.client import ImageProcessorClient, service_root
from imgflow.transport.schemas import OperationStatistic, TelemetrySnapshot

__all__ = [
    "ImageProcessorClient",
    "OperationStatistic",
    "TelemetrySnapshot",
    "service_root",
]
