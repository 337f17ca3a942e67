import asyncio
import contextlib
import importlib
import os
import warnings

warnings.filterwarnings("ignore", category=UserWarning, module="pydantic")

APP_NAME = "tllm"

os.environ["LITELLM_MODE"] = "PRODUCTION"

# `import litellm` takes 1.5 seconds, defer it!


class _ImmediateLoggingWorker:
    """Stands in for litellm's queued logging worker, which binds to the first event loop.

    tllm runs one ``asyncio.run`` per invocation (and tests run many), so
    callbacks are scheduled on whatever loop is current instead.
    """

    def start(self):
        pass

    def enqueue(self, coroutine):
        with contextlib.suppress(RuntimeError):
            asyncio.create_task(coroutine)

    def ensure_initialized_and_enqueue(self, async_coroutine):
        self.enqueue(async_coroutine)

    async def stop(self):
        pass

    async def flush(self):
        pass

    async def clear_queue(self):
        pass


class LazyLiteLLM:
    _lazy_module = None

    def __getattr__(self, name):
        self._load_litellm()
        return getattr(self._lazy_module, name)

    def _load_litellm(self):
        if self._lazy_module is not None:
            return

        module = importlib.import_module("litellm")
        module.suppress_debug_info = True
        module.set_verbose = False
        module.drop_params = True
        module._logging._disable_debugging()
        self._lazy_module = module

        try:
            from litellm.litellm_core_utils import logging_worker
        except ImportError:
            # litellm < 1.76 has no logging worker
            return
        logging_worker.GLOBAL_LOGGING_WORKER = _ImmediateLoggingWorker()


litellm = LazyLiteLLM()

__all__ = ["litellm"]
