from .cErrors import BridgeError, ConfigurationError, EnrichmentError, LinkConnectionError, ProtocolError

__version__ = '1.0.0'

__all__ = [
    'BridgeError',
    'ConfigurationError',
    'EnrichmentError',
    'LinkConnectionError',
    'ProtocolError',
]
