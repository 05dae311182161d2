"""Compatibility shim – model runtime imports.

In **production** only ``tflite-runtime`` is installed (~5 MB) and models are
served from ``.tflite`` files.  In **development** the full ``tensorflow``
package is available, which additionally enables ``.keras`` models.

Import this module lazily (from the model loader) so that the API process can
start, and degrade, when neither runtime is installed.
"""

from __future__ import annotations

try:
    import tensorflow as tf  # type: ignore[import-untyped]

    HAS_TF = True
except ImportError:
    tf = None
    HAS_TF = False

if HAS_TF:
    from tensorflow.lite.python.interpreter import Interpreter  # type: ignore[import-untyped]
else:
    # Production: lightweight tflite-runtime package
    from tflite_runtime.interpreter import Interpreter  # type: ignore[import-untyped]

__all__ = ["HAS_TF", "Interpreter", "tf"]
