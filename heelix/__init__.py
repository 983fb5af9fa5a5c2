"""
Heelix Recall
Activity capture, vectorization and semantic retrieval for the Heelix assistant
"""

__version__ = "0.4.0"
