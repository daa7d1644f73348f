"""storylua runtime package."""
from .context import ExecutionContext, ExecutionResult, LuaFunction
from .interpreter import LuaEngine, get_engine
from .values import LuaValue, from_value, to_value

__all__ = [
    "LuaEngine", "get_engine", "ExecutionContext", "ExecutionResult",
    "LuaFunction", "LuaValue", "from_value", "to_value",
]
