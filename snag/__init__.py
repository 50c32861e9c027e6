from ._version import version as __version__
from .browser import BrowserOptions, BrowserSession, SessionMode
from .tabs import TabCatalog, TabDescriptor, TabResolver

__all__ = [
    "__version__",
    "BrowserOptions",
    "BrowserSession",
    "SessionMode",
    "TabCatalog",
    "TabDescriptor",
    "TabResolver",
]
