"""Host hardware discovery."""
from bodhilab.discovery.hwdetect import SystemDetector, detect_profile

__all__ = ['SystemDetector', 'detect_profile']
