from .math_tools import MathTools
from .tempo_parser import TempoComponents, TempoParser
from .weight_converter import WeightConverter

__all__ = ["MathTools", "TempoComponents", "TempoParser", "WeightConverter"]
