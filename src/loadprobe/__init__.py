__all__ = ["LoadRunner", "RequestExecutor", "StatsAggregator", "Target", "Thresholds", "render_report"]


from .core import LoadRunner
from .executor import RequestExecutor
from .metrics import StatsAggregator
from .models import Target
from .rendering import render_report
from .thresholds import Thresholds
