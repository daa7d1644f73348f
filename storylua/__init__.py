"""storylua - a Lua-subset interpreter for interactive-narrative editors"""
__version__ = "1.0.0"

from .runtime.interpreter import LuaEngine, get_engine
from .cli import main

__all__ = ["LuaEngine", "get_engine", "main"]
