"""
FirePing Services Module.

Ingestion, clustering and lifecycle of wildfire incidents built from NASA
FIRMS detections.

Services:
    - IngestionService: insert-or-ignore persistence of FIRMS rows
    - SpatialClusteringEngine: nearest active incident lookup
    - IncidentAssignmentService: transactional detection -> incident linking
    - IncidentLifecycleService: ending and purging incidents
"""

from .incident_assignment import (
    AssignmentError,
    AssignmentSummary,
    DetectionAlreadyAssignedError,
    IncidentAssignmentService,
)
from .incident_lifecycle import CleanupResult, DeletionResult, IncidentLifecycleService
from .ingestion_service import IngestionResult, IngestionService
from .params import ClusteringParams, LifecycleParams
from .spatial_clustering import SpatialClusteringEngine

__all__ = [
    "AssignmentError",
    "AssignmentSummary",
    "CleanupResult",
    "ClusteringParams",
    "DeletionResult",
    "DetectionAlreadyAssignedError",
    "IncidentAssignmentService",
    "IncidentLifecycleService",
    "IngestionResult",
    "IngestionService",
    "LifecycleParams",
    "SpatialClusteringEngine",
]
