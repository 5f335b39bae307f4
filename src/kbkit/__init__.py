"""kbkit: transactional content migration and integrity engine."""

__version__ = "0.1.0"
