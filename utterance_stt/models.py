"""Loaded-model cache shared by concurrent recognitions.

The cache owns model lifetime: recognitions check a model out with
``acquire()`` and hand it back when the ``with`` block exits. A model that
is checked out is never evicted. Decoding state is created per recognition,
so a single loaded model may be used by several threads at once.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from huggingface_hub import snapshot_download
from huggingface_hub.utils import LocalEntryNotFoundError

from utterance_stt._types import ModelHandle

logger = logging.getLogger(__name__)

KNOWN_MODELS: dict[str, tuple[str, ...]] = {
    "faster_whisper": ("tiny", "base", "small", "medium"),
    "vosk": ("vosk-model-small-en-us-0.15", "vosk-model-en-us-0.22"),
}

DEFAULT_MODELS = {
    "faster_whisper": "small",
    "vosk": "vosk-model-small-en-us-0.15",
}

WHISPER_REPO_PREFIX = "Systran/faster-whisper-"


def explicit_model_path(identifier: str) -> Path | None:
    """Return ``identifier`` as a directory if it is written as a path and exists.

    Bare names such as ``small`` are never treated as paths.
    """
    path = Path(identifier).expanduser()
    written_as_path = path.is_absolute() or identifier.startswith(("./", "../", "~"))
    if written_as_path and path.is_dir():
        return path
    return None


def resolve_model_path(identifier: str, model_directory: str | None = None) -> Path | None:
    """Locate an unpacked model directory (Vosk layout).

    Explicit paths are used as-is; bare names are looked up inside
    ``model_directory``, or the working directory when none is configured.
    """
    explicit = explicit_model_path(identifier)
    if explicit is not None:
        return explicit
    candidate = Path(model_directory or ".").expanduser() / identifier
    if candidate.is_dir():
        return candidate
    return None


def whisper_repo_id(identifier: str) -> str:
    """Map a faster-whisper size name to its Hugging Face repository."""
    if "/" in identifier:
        return identifier
    return f"{WHISPER_REPO_PREFIX}{identifier}"


def find_cached_whisper_model(identifier: str, model_directory: str | None = None) -> Path | None:
    """Locate a downloaded faster-whisper model in the Hugging Face cache.

    ``model_directory`` is the ``download_root`` handed to faster-whisper;
    None means the default Hugging Face cache. Nothing is downloaded.
    """
    explicit = explicit_model_path(identifier)
    if explicit is not None:
        return explicit
    try:
        snapshot = snapshot_download(
            whisper_repo_id(identifier),
            cache_dir=model_directory,
            local_files_only=True,
        )
    except LocalEntryNotFoundError:
        logger.debug("Model '%s' not found in cache %s", identifier, model_directory or "(default)")
        return None
    return Path(snapshot)


def is_model_available(
    identifier: str,
    model_directory: str | None = None,
    backend: str = "faster_whisper",
) -> bool:
    """Check whether a model is present locally for ``backend``."""
    if backend == "faster_whisper":
        return find_cached_whisper_model(identifier, model_directory) is not None
    return resolve_model_path(identifier, model_directory) is not None


class _CacheEntry:
    __slots__ = ("handle", "checkouts")

    def __init__(self, handle: ModelHandle):
        self.handle = handle
        self.checkouts = 0


class ModelCache:
    """Thread-safe cache of loaded models with scoped checkout.

    Args:
        loader: Callable loading a model handle for an identifier; errors it
            raises propagate to the caller of ``acquire()``
    """

    def __init__(self, loader: Callable[[str], ModelHandle]):
        self._loader = loader
        self._entries: dict[str, _CacheEntry] = {}
        self._lock = threading.Lock()
        self._load_locks: dict[str, threading.Lock] = {}

    def __contains__(self, identifier: str) -> bool:
        with self._lock:
            return identifier in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def checkouts(self, identifier: str) -> int:
        with self._lock:
            entry = self._entries.get(identifier)
            return entry.checkouts if entry else 0

    @contextmanager
    def acquire(self, identifier: str) -> Iterator[ModelHandle]:
        """Check out a loaded model, loading it on first use."""
        handle = self._checkout(identifier)
        try:
            yield handle
        finally:
            self._release(identifier)

    def evict(self, identifier: str) -> bool:
        """Drop an idle model. Returns False if it is missing or checked out."""
        with self._lock:
            entry = self._entries.get(identifier)
            if entry is None or entry.checkouts > 0:
                return False
            del self._entries[identifier]
        logger.info("Evicted model '%s'", identifier)
        return True

    def clear(self) -> int:
        """Drop every idle model and return how many were dropped."""
        with self._lock:
            idle = [key for key, entry in self._entries.items() if entry.checkouts == 0]
            for key in idle:
                del self._entries[key]
        if idle:
            logger.info("Cleared %d cached model(s)", len(idle))
        return len(idle)

    def _checkout(self, identifier: str) -> ModelHandle:
        with self._lock:
            entry = self._entries.get(identifier)
            if entry is not None:
                entry.checkouts += 1
                return entry.handle
            load_lock = self._load_locks.setdefault(identifier, threading.Lock())

        # Only one thread loads a given identifier; others wait and reuse it.
        with load_lock:
            with self._lock:
                entry = self._entries.get(identifier)
                if entry is not None:
                    entry.checkouts += 1
                    return entry.handle

            logger.info("Loading model '%s'", identifier)
            start_time = time.perf_counter()
            handle = self._loader(identifier)
            logger.info(
                "Model '%s' loaded in %.2f seconds",
                identifier,
                time.perf_counter() - start_time,
            )

            with self._lock:
                entry = _CacheEntry(handle)
                entry.checkouts = 1
                self._entries[identifier] = entry
                return handle

    def _release(self, identifier: str) -> None:
        with self._lock:
            entry = self._entries.get(identifier)
            if entry is not None and entry.checkouts > 0:
                entry.checkouts -= 1
