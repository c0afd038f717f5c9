"""
Base class for the pipeline's capability adapters.

Provides consistent logging, execution timing and async retry with backoff so
every adapter reports its work the same way.
"""

import asyncio
import logging
import time
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple, Type


class BaseWorker:
    """
    Common base for adapters (captions, remote worker, downloader, LLM...).

    Attributes:
        name: Human-readable name for the worker
        max_retries: Maximum number of retry attempts
        retry_delay: Base delay between retries in seconds
        logger: Configured logger instance
    """

    def __init__(
        self,
        name: str,
        max_retries: int = 3,
        retry_delay: float = 1.0,
        log_level: str = "INFO"
    ) -> None:
        self.name = name
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.logger = self._setup_logger(log_level)
        self._execution_start_time: Optional[float] = None

    def _setup_logger(self, log_level: str) -> logging.Logger:
        """
        Set up logger with consistent formatting for this worker.

        Args:
            log_level: Logging level as string

        Returns:
            Configured logger instance
        """
        logger = logging.getLogger(f"worker.{self.name}")

        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            logger.addHandler(handler)

        logger.setLevel(getattr(logging, str(log_level).upper(), logging.INFO))
        return logger

    @contextmanager
    def _execution_timer(self, operation: str = "Execution"):
        """Context manager to track execution time."""
        self._execution_start_time = time.time()
        try:
            yield
        finally:
            execution_time = time.time() - self._execution_start_time
            self.log_with_context(f"{operation} finished in {execution_time:.2f}s", level="DEBUG")

    def log_with_context(
        self,
        message: str,
        level: str = "INFO",
        extra_context: Optional[Dict[str, Any]] = None
    ) -> None:
        """
        Log message with worker context and optional additional context.

        Args:
            message: Log message
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
            extra_context: Additional context to include in log
        """
        context_msg = f"[{self.name}] {message}"

        if extra_context:
            context_parts = [f"{k}={v}" for k, v in extra_context.items()]
            context_msg += f" | Context: {', '.join(context_parts)}"

        log_method = getattr(self.logger, level.lower())
        log_method(context_msg)

    async def retry_with_backoff(
        self,
        func: Callable[..., Awaitable[Any]],
        *args,
        max_attempts: Optional[int] = None,
        retry_delay: Optional[float] = None,
        backoff: str = "exponential",
        retry_on: Tuple[Type[BaseException], ...] = (Exception,),
        **kwargs
    ) -> Any:
        """
        Await func until it succeeds or attempts run out.

        Args:
            func: Coroutine function to execute
            max_attempts: Total attempts (defaults to max_retries)
            retry_delay: Base delay before the second attempt
            backoff: "exponential" doubles the delay, "linear" grows it by the base delay
            retry_on: Exception types that trigger another attempt; anything else propagates

        Raises:
            Exception: Last exception encountered after all attempts are exhausted
        """
        attempts = max_attempts if max_attempts is not None else self.max_retries
        base_delay = retry_delay if retry_delay is not None else self.retry_delay
        delay = base_delay
        last_exception: Optional[BaseException] = None

        for attempt in range(1, attempts + 1):
            try:
                result = await func(*args, **kwargs)
                if attempt > 1:
                    self.log_with_context(f"Operation succeeded on attempt {attempt}")
                return result
            except retry_on as e:
                last_exception = e
                if attempt < attempts:
                    self.log_with_context(
                        f"Attempt {attempt} failed: {e}. Retrying in {delay:.1f}s...",
                        level="WARNING",
                        extra_context={"attempt": attempt, "max_attempts": attempts}
                    )
                    await asyncio.sleep(delay)
                    delay = delay * 2 if backoff == "exponential" else delay + base_delay
                else:
                    self.log_with_context(
                        f"All {attempts} attempts failed. Last error: {e}",
                        level="ERROR"
                    )

        raise last_exception
