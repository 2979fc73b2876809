"""Live audio spectrum analyzer."""

__version__ = "0.1.0"
