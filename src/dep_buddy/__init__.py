"""
dep-buddy: dependency update pull-request bot.

Scans manifests for outdated packages, groups the updates into pull
requests, and decodes previously rendered pull requests to decide
whether they should be closed.
"""

__version__ = "1.0.0"
