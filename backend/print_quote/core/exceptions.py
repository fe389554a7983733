# core/exceptions.py

class PrintQuoteError(Exception):
    """Base class for all custom exceptions in this application."""
    pass

class ConfigurationError(PrintQuoteError):
    """Exception raised for errors in configuration loading or validation."""
    pass

class FileFormatError(PrintQuoteError):
    """Exception raised for unreadable or unsupported mesh file contents."""
    pass

class GeometryProcessingError(PrintQuoteError):
    """Exception raised during mesh construction or analysis."""
    pass

class InvalidMeshError(GeometryProcessingError):
    """
    The mesh cannot yield a meaningful estimate: no triangles, a vertex stream
    whose length is not a multiple of 3, or a zero enclosed volume.
    """
    pass

class MaterialNotFoundError(PrintQuoteError):
    """Exception raised when a specified material ID is not in the material table."""
    pass

class ProfileNotFoundError(PrintQuoteError):
    """Exception raised when a specified print profile ID is not in the profile table."""
    pass

class SlicerError(PrintQuoteError):
    """Exception raised for errors related to the external slicing collaborator."""
    pass

class SlicerTimeoutError(SlicerError):
    """The slicing collaborator did not answer within the configured timeout."""
    pass

class QuoteGenerationError(PrintQuoteError):
    """Generic exception for failures during the overall quote computation."""
    pass
