"""
FitLeads backend.

Lead lifecycle, status maintenance and funnel analytics API.
"""

__version__ = "1.0.0"
