from .gradient_recorder import GradientRecorder

__all__ = [
    "GradientRecorder"
]
