from pawx.pawx_runtime import ScriptRunner, ExecutionResult

__all__ = ["ScriptRunner", "ExecutionResult"]
