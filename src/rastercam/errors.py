"""Exception types raised by rastercam.

Geometry noise (zero-area triangles, rays parallel to a face, rays that hit
nothing) is not an error: the rasterizer skips it and carries on. The types
below cover the cases a caller has to act on.
"""


class RasterCamError(Exception):
    """Base class for all rastercam errors."""


class InvalidInputError(RasterCamError, ValueError):
    """An argument is out of range or unusable (bad step size, empty tool)."""


class InconsistentConfigurationError(RasterCamError, ValueError):
    """Terrain, tool and toolpath disagree on the shared grid step."""


class AllocationError(RasterCamError, MemoryError):
    """Backing storage for a grid or point cloud could not be obtained."""


class HandleError(RasterCamError, KeyError):
    """A pipeline handle was released or belongs to another run."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep the plain message
        return str(self.args[0]) if self.args else ''


__all__ = [
    'RasterCamError',
    'InvalidInputError',
    'InconsistentConfigurationError',
    'AllocationError',
    'HandleError',
]
