# -*- coding: utf-8 -*-
"""Local-first task storage with undo/redo history, a stash and remote sync."""

__version__ = "0.3.0"
