"""
TrustForge: mobile application security scan orchestrator.

Accepts APK / IPA packages, fans them out to third-party scanning services,
folds the results into a 0-100 trust score and renders a PDF report.
"""

__version__ = "1.0.0"
