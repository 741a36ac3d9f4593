"""
Valuation report generation pipeline.

Turns a submitted engagement (valuation model, qualitative context, stored
economic outlook) into an assembled report-sections document, tracking each
run as a background job.
"""

__version__ = "0.1.0"
