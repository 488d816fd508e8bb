"""
sourcepkg — convergent installs of software from source archives.
"""

__version__ = "0.1.0"
