"""Resolve `module:attr` targets to an App."""
from __future__ import annotations

import importlib
import os
import sys

from riptide.errors import ConfigurationError
from riptide.registry import App


def load_app(target: str) -> App:
    """Import `package.module:app`; a callable attribute is treated as a factory."""
    module_name, _, attr = target.partition(":")
    if not module_name:
        raise ConfigurationError(f"invalid target {target!r}, expected module:app")
    attr = attr or "app"

    cwd = os.getcwd()
    if cwd not in sys.path:
        sys.path.insert(0, cwd)

    module = importlib.import_module(module_name)
    try:
        obj = getattr(module, attr)
    except AttributeError:
        raise ConfigurationError(f"{module_name} has no attribute {attr!r}") from None

    if not isinstance(obj, App) and callable(obj):
        obj = obj()
    if not isinstance(obj, App):
        raise ConfigurationError(f"{target} is {type(obj).__name__}, expected a riptide App")
    return obj
