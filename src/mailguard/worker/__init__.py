"""
Inference worker context.

- sizing.py: resource-aware model selection and load parameters
- proxy.py: InferenceWorkerProxy (budget check, completion, retry, session trim)
- runtime.py: WorkerRuntime (control-message loop)
- __main__.py: subprocess entry point (JSON lines over stdin/stdout)
"""

from mailguard.worker.proxy import InferenceWorkerProxy
from mailguard.worker.runtime import WorkerRuntime
from mailguard.worker.sizing import MODEL_CATALOG, plan_model_load

__all__ = [
    "InferenceWorkerProxy",
    "WorkerRuntime",
    "MODEL_CATALOG",
    "plan_model_load",
]
