"""
Site-selection scoring and spatial pattern engine.

Ranks candidate trade areas with a gravity model, estimates cannibalization
of existing outlets, and checks recommended sites for artificial-looking
geometric arrangements.
"""

__version__ = "0.3.0"
