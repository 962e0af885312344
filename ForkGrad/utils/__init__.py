from . import loggers
from .loggers import GradientRecorder

__all__ = [
    "loggers",
    "GradientRecorder"
]
