"""
Exceptions raised by the exporter.
"""


class ExporterError(Exception):
    """Base exception for exporter errors"""
    pass


class ConfigurationError(ExporterError):
    """Raised when the configuration file cannot be read or validated"""
    pass


class ReaderError(ExporterError):
    """Raised when vpncmd cannot be run or its output cannot be parsed"""

    def __init__(self, message: str, hub: str = ''):
        super().__init__(message)
        self.hub = hub
