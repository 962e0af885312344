from .gradient_clipper import GradientClipper
from .gradient_processor import GradientProcessor

__all__ = [
    "GradientClipper",
    "GradientProcessor"
]
