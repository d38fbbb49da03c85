"""
creditflow: spaced-repetition scheduling over a weighted prerequisite graph.

Reviewing one item spreads partial credit to related items so that effort
goes to material that is most likely forgotten or most load-bearing.
"""

__version__ = "0.1.0"
