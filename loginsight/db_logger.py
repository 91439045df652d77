"""Database operation logging for data-access code."""

import traceback


class DatabaseLogger:
    def __init__(self, emitter, slow_query_ms: int = 1000):
        self._emitter = emitter
        self._slow_query_ms = slow_query_ms

    def log_query(self, model: str, operation: str, query, result, execution_time_ms: float):
        if isinstance(result, (list, tuple)):
            result_count = len(result)
        else:
            result_count = 1 if result else 0

        fields = dict(
            model=model,
            operation=operation,
            query=query,
            executionTime=f"{int(round(execution_time_ms))}ms",
            resultCount=result_count,
        )
        if execution_time_ms > self._slow_query_ms:
            return self._emitter.emit("warn", "Slow Database Query", performance="slow_query", **fields)
        return self._emitter.emit("info", "Database Operation", **fields)

    def log_error(self, model: str, operation: str, query, error: BaseException):
        return self._emitter.emit(
            "error",
            "Database Error",
            model=model,
            operation=operation,
            query=query,
            error=str(error),
            stack="".join(traceback.format_exception(type(error), error, error.__traceback__)),
            database="error",
        )
