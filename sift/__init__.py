# Sift Package
"""
Interactive item search and selection engine.

Components:
  - Sources: produce candidate items as streams of batches
  - Filters: narrow, sort and convert the collected items
  - Columns: render each item's display line
  - Kinds: actions applicable to the selected items
  - UIs: render the live result list
"""

__version__ = "0.1.0"
