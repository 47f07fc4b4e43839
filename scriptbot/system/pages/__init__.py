from .driver import PageDriver, PlaywrightPageDriver
from .injection import InjectionController
from .manager import BrowserSession, PageContext, PageManager

__all__ = [
    "BrowserSession",
    "InjectionController",
    "PageContext",
    "PageDriver",
    "PageManager",
    "PlaywrightPageDriver",
]
