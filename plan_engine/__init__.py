"""Plan Materialization Engine.

Turns published multi-week training plans into dated calendar entries and keeps
them in sync as the plan is edited and republished.
"""

__version__ = "0.1.0"
