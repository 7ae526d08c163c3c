#!/usr/bin/env python3
"""
Errors Module
Exception taxonomy shared by readers, exporters and structural edits
"""


class SceneSyncError(Exception):
    """Base class for all document synchronization errors"""


class MalformedContainerError(SceneSyncError, ValueError):
    """Binary container has a bad magic number, version or chunk length

    Always fatal: the load is aborted and no document is produced.
    """


class ReferenceIntegrityError(SceneSyncError, ValueError):
    """A node, mesh, skin, camera or accessor index does not resolve"""


class CycleError(SceneSyncError):
    """Reparenting would make a node its own ancestor"""


class ProtectedNodeError(SceneSyncError):
    """The node is flagged non-deletable / non-movable"""


class NotFoundError(SceneSyncError, LookupError):
    """The id is not present in the node mapper"""


class EmptyAnimationError(SceneSyncError):
    """Animation ingestion produced zero channels

    Attributes:
        skipped: (track name, reason) for every rejected track
    """

    def __init__(self, message, skipped=None):
        super().__init__(message)
        self.skipped = list(skipped or [])


class UnresolvedBoneWarning(UserWarning):
    """A track target could not be matched to any skeleton joint

    Not raised. Instances are collected as diagnostics on the retarget
    result so callers can surface them.
    """

    def __init__(self, track_name, bone_name, best_score=0.0):
        self.track_name = track_name
        self.bone_name = bone_name
        self.best_score = best_score
        super().__init__(
            f"No joint matches bone '{bone_name}' "
            f"(track '{track_name}', best score {best_score:.2f})"
        )
