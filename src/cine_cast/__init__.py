"""CineCast package exposing the signaling client for one-to-one broadcasts."""

from typing import Any

from .version import APP_VERSION


def create_controller(*args: Any, **kwargs: Any):
    from .controller import create_controller as _create_controller

    return _create_controller(*args, **kwargs)


__all__ = ["create_controller", "APP_VERSION"]
